"""Client services: transport, pagination, caching, resources and reports."""
