"""Async client for the FreeAgent accounting API."""

from freeagent_client.services.client import FreeAgentClient

__all__ = ["FreeAgentClient"]
