from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional
import hashlib
import json

from pydantic import BaseModel, Field, field_validator


def name_key(name: Optional[str]) -> str:
    """Canonical identity form of an actor name: trimmed and lowercased."""
    return (name or "").strip().lower()


def _short_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


def make_actor_id(key: str) -> str:
    """Stable actor id derived from the actor's name_key."""
    return f"actor_{_short_hash(key)}"


def make_incident_id(actor_id: str, victim_name: str, discovered_date: date) -> str:
    """Stable incident id derived from the dedup key."""
    return f"incident_{_short_hash(f'{actor_id}|{victim_name}|{discovered_date.isoformat()}')}"


class SourceSet:
    """
    Ordered, deduplicated set of provenance tags.

    Membership is exact: "ransomlook" is not considered present in a set
    holding "ransomlook-mirror".
    """

    def __init__(self, tags: Optional[Iterable[str]] = None):
        self._tags: List[str] = []
        for tag in tags or ():
            self.add(tag)

    @classmethod
    def parse(cls, value: Any) -> "SourceSet":
        """Accept a list of tags, a JSON array, or a legacy comma-joined string."""
        if value is None:
            return cls()
        if isinstance(value, SourceSet):
            return cls(value)
        if isinstance(value, str):
            text = value.strip()
            if text.startswith("["):
                return cls(json.loads(text))
            return cls(part for part in text.split(","))
        return cls(value)

    def add(self, tag: str) -> bool:
        """Add a tag; returns False when it was already present."""
        tag = (tag or "").strip()
        if not tag or tag in self._tags:
            return False
        self._tags.append(tag)
        return True

    def __contains__(self, tag: object) -> bool:
        return tag in self._tags

    def __iter__(self) -> Iterator[str]:
        return iter(self._tags)

    def __len__(self) -> int:
        return len(self._tags)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SourceSet):
            return set(self._tags) == set(other._tags)
        if isinstance(other, (set, frozenset)):
            return set(self._tags) == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"SourceSet({self._tags!r})"

    def to_list(self) -> List[str]:
        return list(self._tags)

    def display(self) -> str:
        return ", ".join(self._tags)


@dataclass
class ThreatActor:
    id: str
    name: str                         # display name, first-writer casing
    name_key: str                     # lowercased/trimmed, unique
    aliases: List[str] = field(default_factory=list)
    actor_type: str = "ransomware"
    status: str = "active"
    source: Optional[str] = None      # adapter that first saw the actor
    description: Optional[str] = None
    last_seen: Optional[date] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Incident:
    id: str
    actor_id: str
    victim_name: str
    victim_sector: str
    discovered_date: date
    source: SourceSet = field(default_factory=SourceSet)
    victim_country: Optional[str] = None
    victim_website: Optional[str] = None
    status: str = "claimed"
    source_url: Optional[str] = None
    raw_data: Dict[str, Any] = field(default_factory=dict)

    @property
    def dedup_key(self) -> tuple:
        return (self.actor_id, self.victim_name, self.discovered_date)

    @property
    def corroborated(self) -> bool:
        return bool(self.raw_data.get("corroborated"))


class RawClaim(BaseModel):
    """One source's unnormalized report of a single victim."""

    group_name: str = Field(default="", description="Raw group/actor name as published")
    victim_name: str = Field(default="", description="Raw victim label as published")
    discovered_raw: str = Field(default="", description="Source-specific date string")
    country: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None
    api_provided_sector: Optional[str] = None
    activity: Optional[str] = None
    source_url: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict, description="Original payload fields")

    @field_validator("group_name", "victim_name", "discovered_raw", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator(
        "country", "website", "description", "api_provided_sector", "activity", "source_url",
        mode="before",
    )
    @classmethod
    def _coerce_optional_text(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


@dataclass
class NormalizedClaim:
    """Canonical claim shape handed to the resolver and deduplicator."""

    source: str
    group_name: str
    victim_name: str
    discovered_date: Optional[date]
    country: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None
    api_sector: Optional[str] = None
    activity: Optional[str] = None
    source_url: Optional[str] = None
    raw_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ActorSeed:
    """Group catalogue entry used to pre-create actors with metadata."""

    name: str
    description: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class UpsertOutcome(str, Enum):
    CREATED = "created"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    CORROBORATED = "corroborated"
    SKIPPED_MALFORMED = "skipped_malformed"
    FAILED = "failed"
