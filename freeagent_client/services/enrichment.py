"""In-memory enrichment of fetched entities.

Joins independently fetched collections by their URI references. A primary
record's foreign reference is matched against the ``url`` of candidate
records by exact string equality: no normalization, no case folding, and no
HTTP request at join time. A reference that matches nothing leaves the
relationship empty.

Inputs are never modified; every call builds new, frozen values.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Generic, Iterable, List, Mapping, Optional, Sequence, TypeVar

from freeagent_client.models.domain import Contact, Project, TaskItem, Timeslip, User
from freeagent_client.models.reports import EnrichedProject, EnrichedTimeslip

E = TypeVar("E")


@dataclass(frozen=True)
class Relationship:
    """Many-to-one link from a primary record to a related collection.

    Attributes:
        name: Key of the related collection and of the enriched relation
        foreign_key: Attribute of the primary record holding the reference
        identity: Attribute of related records the reference must equal
    """

    name: str
    foreign_key: str
    identity: str = "url"


@dataclass(frozen=True)
class EnrichedRecord(Generic[E]):
    """A primary entity with zero or one related entity per relationship."""

    entity: E
    relations: Mapping[str, Optional[Any]] = field(default_factory=dict)

    def related(self, name: str) -> Optional[Any]:
        return self.relations.get(name)


def index_by_identity(records: Iterable[Any], identity: str = "url") -> Dict[str, Any]:
    """Map identity value to record. The first record wins on duplicates."""
    index: Dict[str, Any] = {}
    for record in records:
        key = getattr(record, identity, None)
        if key is not None:
            index.setdefault(key, record)
    return index


class EnrichmentEngine:
    """Resolves declared relationships for a batch of primary records.

    Each relationship is resolved independently against an index built once
    per call, so enrichment is linear in the size of the inputs.

    Example:
        ```python
        engine = EnrichmentEngine([Relationship("contact", "contact")])
        records = engine.enrich(projects, {"contact": contacts})
        records[0].related("contact")
        ```
    """

    def __init__(self, relationships: Sequence[Relationship]):
        self.relationships = tuple(relationships)

    def enrich(
        self,
        primary: Sequence[E],
        related: Mapping[str, Sequence[Any]],
    ) -> List[EnrichedRecord[E]]:
        indexes = {
            rel.name: index_by_identity(related.get(rel.name, ()), rel.identity)
            for rel in self.relationships
        }

        results: List[EnrichedRecord[E]] = []
        for record in primary:
            relations = {}
            for rel in self.relationships:
                reference = getattr(record, rel.foreign_key, None)
                relations[rel.name] = indexes[rel.name].get(reference) if reference is not None else None
            results.append(EnrichedRecord(entity=record, relations=MappingProxyType(relations)))
        return results


# =============================================================================
# FreeAgent joins
# =============================================================================

TIMESLIP_RELATIONSHIPS = (
    Relationship(name="task", foreign_key="task"),
    Relationship(name="user", foreign_key="user"),
)
PROJECT_RELATIONSHIPS = (Relationship(name="contact", foreign_key="contact"),)


def enrich_timeslips(
    timeslips: Sequence[Timeslip],
    tasks: Sequence[TaskItem],
    users: Sequence[User],
) -> List[EnrichedTimeslip]:
    """Attach each timeslip's task and user."""
    engine = EnrichmentEngine(TIMESLIP_RELATIONSHIPS)
    return [
        EnrichedTimeslip(
            timeslip=record.entity,
            task=record.related("task"),
            user=record.related("user"),
        )
        for record in engine.enrich(timeslips, {"task": tasks, "user": users})
    ]


def attach_contacts(projects: Sequence[Project], contacts: Sequence[Contact]) -> List[EnrichedProject]:
    """Attach each project's owning contact."""
    engine = EnrichmentEngine(PROJECT_RELATIONSHIPS)
    return [
        EnrichedProject(project=record.entity, contact=record.related("contact"))
        for record in engine.enrich(projects, {"contact": contacts})
    ]


def enrich_projects(
    projects: Sequence[Project],
    contacts: Sequence[Contact],
    timeslips: Sequence[EnrichedTimeslip],
) -> List[EnrichedProject]:
    """Attach contacts and already-enriched timeslips to projects.

    Timeslips must be enriched first (task, user); they are grouped onto the
    project whose ``url`` equals the timeslip's ``project`` reference, in
    input order.
    """
    by_project: Dict[str, List[EnrichedTimeslip]] = {}
    for enriched in timeslips:
        reference = enriched.timeslip.project
        if reference is not None:
            by_project.setdefault(reference, []).append(enriched)

    return [
        enriched.model_copy(update={"timeslips": tuple(by_project.get(enriched.project.url, ()))})
        for enriched in attach_contacts(projects, contacts)
    ]


def enrich_project(
    project: Project,
    contacts: Sequence[Contact],
    timeslips: Sequence[EnrichedTimeslip],
) -> EnrichedProject:
    """Single-project form of ``enrich_projects``."""
    return enrich_projects([project], contacts, timeslips)[0]
