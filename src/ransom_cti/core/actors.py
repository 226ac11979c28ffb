"""
Threat-actor resolution.

Feeds publish group names with no shared identifier, so actors are matched
on name_key (trimmed, lowercased name). The ActorCache holds name_key -> id
for one batch and is seeded once from the store; the ActorResolver creates
missing actors and recovers from racing writers through a case-insensitive
store lookup.
"""

import logging
import sqlite3
from typing import Any, Dict, Iterable, Iterator, Optional, Set, Tuple

from ransom_cti.core import config
from ransom_cti.core.db import (
    add_actor_alias,
    find_actor_by_name,
    insert_actor,
    latest_incident_dates,
    load_actors,
    update_actor_last_seen,
)
from ransom_cti.core.errors import MalformedRecord, ResolutionConflict, WriteFailure
from ransom_cti.core.models import ThreatActor, make_actor_id, name_key

logger = logging.getLogger(__name__)

# (alias, canonical name); first match wins
KNOWN_ACTOR_ALIASES: Tuple[Tuple[str, str], ...] = (
    ("ALPHV", "BlackCat"),
    ("Noberus", "BlackCat"),
    ("LockBit 3.0", "LockBit"),
    ("LockBit Black", "LockBit"),
    ("LockBit Green", "LockBit"),
    ("Clop", "Cl0p"),
    ("TA505", "Cl0p"),
    ("PlayCrypt", "Play"),
    ("Royal Ransomware", "Royal"),
    ("BlackBasta", "Black Basta"),
    ("Agenda", "Qilin"),
)


def canonical_actor_name(name: str) -> Optional[str]:
    """Return the canonical name for a known alias, or None."""
    key = name_key(name)
    for alias, canonical in KNOWN_ACTOR_ALIASES:
        if name_key(alias) == key and name_key(canonical) != key:
            return canonical
    return None


class ActorCache:
    """
    Batch-scoped name_key -> actor_id map.

    Seed it once at batch start (from_store) and discard it at batch end.
    """

    def __init__(self, actors: Optional[Iterable[ThreatActor]] = None):
        self._ids: Dict[str, str] = {}
        for actor in actors or ():
            self.add_actor(actor)

    @classmethod
    def from_store(cls, conn: sqlite3.Connection) -> "ActorCache":
        actors = load_actors(conn)
        logger.debug(f"Seeded actor cache with {len(actors)} actors")
        return cls(actors)

    def add_actor(self, actor: ThreatActor) -> None:
        self._ids.setdefault(actor.name_key, actor.id)
        for alias in actor.aliases:
            self._ids.setdefault(name_key(alias), actor.id)

    def get(self, name: str) -> Optional[str]:
        return self._ids.get(name_key(name))

    def put(self, name: str, actor_id: str) -> None:
        self._ids[name_key(name)] = actor_id

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name_key(name) in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)


class ActorResolver:
    """
    Resolve raw group names to actor ids, creating actors on first sighting.

    resolve() returns (actor_id, created). Every id it hands out is recorded
    in `touched` so that refresh_last_seen() can update those actors once,
    after the batch.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        cache: Optional[ActorCache] = None,
        *,
        source: Optional[str] = None,
        actor_type: str = config.DEFAULT_ACTOR_TYPE,
        status: str = config.DEFAULT_ACTOR_STATUS,
    ):
        self.conn = conn
        self.cache = cache if cache is not None else ActorCache.from_store(conn)
        self.source = source
        self.actor_type = actor_type
        self.status = status
        self.touched: Set[str] = set()
        self.created_count = 0

    def resolve(
        self,
        name: Optional[str],
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[str, bool]:
        key = name_key(name)
        if not key:
            raise MalformedRecord("Empty actor name", field="group_name")

        actor_id = self.cache.get(key)
        if actor_id:
            self.touched.add(actor_id)
            return actor_id, False

        canonical = canonical_actor_name(name)
        if canonical:
            actor_id, created = self.resolve(canonical, description, metadata)
            self._record_alias(actor_id, name.strip())
            self.cache.put(key, actor_id)
            return actor_id, created

        actor_id, created = self._create(name.strip(), key, description, metadata)
        self.cache.put(key, actor_id)
        self.touched.add(actor_id)
        if created:
            self.created_count += 1
        return actor_id, created

    def _create(
        self,
        name: str,
        key: str,
        description: Optional[str],
        metadata: Optional[Dict[str, Any]],
    ) -> Tuple[str, bool]:
        actor = ThreatActor(
            id=make_actor_id(key),
            name=name,
            name_key=key,
            actor_type=self.actor_type,
            status=self.status,
            source=self.source,
            description=description,
            metadata=dict(metadata or {}),
        )
        try:
            insert_actor(self.conn, actor)
        except sqlite3.IntegrityError:
            # Another writer created it (possibly with different casing)
            try:
                existing = find_actor_by_name(self.conn, name)
            except sqlite3.Error as e:
                raise WriteFailure(f"Fallback lookup for actor '{name}' failed: {e}") from e
            if existing is None:
                raise ResolutionConflict(
                    f"Could not create or find actor '{name}'", name=name
                )
            logger.debug(f"Adopted existing actor {existing.id} for '{name}'")
            return existing.id, False
        except sqlite3.Error as e:
            raise WriteFailure(f"Failed to insert actor '{name}': {e}") from e

        logger.debug(f"Created actor {actor.id} ({name})")
        return actor.id, True

    def _record_alias(self, actor_id: str, alias: str) -> None:
        try:
            if add_actor_alias(self.conn, actor_id, alias, source=self.source):
                logger.debug(f"Recorded alias '{alias}' for actor {actor_id}")
        except sqlite3.Error as e:
            logger.warning(f"Could not record alias '{alias}' for actor {actor_id}: {e}")

    def refresh_last_seen(self) -> int:
        """
        Recompute last_seen for every touched actor from its incidents.

        One grouped query, then one write per actor. Returns the number of
        actors updated.
        """
        if not self.touched:
            return 0

        latest = latest_incident_dates(self.conn, self.touched)
        updated = 0
        for actor_id, last_seen in latest.items():
            try:
                update_actor_last_seen(self.conn, actor_id, last_seen)
                updated += 1
            except sqlite3.Error as e:
                logger.warning(f"Could not update last_seen for actor {actor_id}: {e}")
        logger.debug(f"Updated last_seen for {updated} actors")
        return updated
