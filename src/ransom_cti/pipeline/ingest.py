"""
Per-feed batch driver.

For one adapter run:
1. Pre-seed actors from the feed's group catalogue (best effort)
2. Normalize each RawClaim; malformed claims are counted and skipped
3. Resolve the actor, then upsert the incident (create / corroborate / skip)
4. Recompute last_seen for every touched actor, once
5. Write one sync_log row with the run's counts

Claims are processed one at a time; every write commits on its own, so an
interrupted run can simply be re-run.
"""

import logging
import sqlite3
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ransom_cti.core.actors import ActorCache, ActorResolver
from ransom_cti.core.db import record_sync_run
from ransom_cti.core.deduplication import IncidentDeduplicator
from ransom_cti.core.errors import (
    MalformedRecord,
    PipelineError,
    ResolutionConflict,
    TransientFetchError,
    WriteFailure,
)
from ransom_cti.core.http import HttpClient
from ransom_cti.core.models import ActorSeed, NormalizedClaim, RawClaim, UpsertOutcome
from ransom_cti.core.sectors import classify_sector
from ransom_cti.core.sources import FeedAdapter, SOURCE_REGISTRY, get_adapter
from ransom_cti.core.utils import now_utc_iso, parse_discovered_date, strip_html

logger = logging.getLogger(__name__)


@dataclass
class RunStats:
    source: str
    records_processed: int = 0
    created: int = 0
    skipped_duplicate: int = 0
    corroborated: int = 0
    skipped_malformed: int = 0
    failed: int = 0
    actors_created: int = 0
    actors_refreshed: int = 0
    status: str = "success"
    error_message: Optional[str] = None

    def record(self, outcome: UpsertOutcome) -> None:
        if outcome is UpsertOutcome.CREATED:
            self.created += 1
        elif outcome is UpsertOutcome.SKIPPED_DUPLICATE:
            self.skipped_duplicate += 1
        elif outcome is UpsertOutcome.CORROBORATED:
            self.corroborated += 1
        elif outcome is UpsertOutcome.SKIPPED_MALFORMED:
            self.skipped_malformed += 1
        else:
            self.failed += 1

    @property
    def records_added(self) -> int:
        return self.created

    @property
    def records_updated(self) -> int:
        return self.corroborated

    def details(self) -> Dict[str, int]:
        return {
            "created": self.created,
            "skipped_duplicate": self.skipped_duplicate,
            "corroborated": self.corroborated,
            "skipped_malformed": self.skipped_malformed,
            "failed": self.failed,
            "actors_created": self.actors_created,
        }

    def summary(self) -> str:
        return (
            f"{self.source}: {self.records_processed} processed, "
            f"{self.created} added, {self.skipped_duplicate} skipped_duplicate, "
            f"{self.corroborated} corroborated, {self.skipped_malformed} malformed, "
            f"{self.failed} failed, {self.actors_created} new actors"
        )


def normalize_claim(raw: RawClaim, source: str) -> NormalizedClaim:
    """
    Turn a RawClaim into the canonical claim shape.

    Raises MalformedRecord for a missing group or victim name, or a date that
    does not name a calendar day.
    """
    if not raw.group_name:
        raise MalformedRecord("Missing group name", field="group_name")
    if not raw.victim_name:
        raise MalformedRecord("Missing victim name", field="victim_name")

    discovered = parse_discovered_date(raw.discovered_raw)
    if discovered is None:
        raise MalformedRecord(
            f"Unparseable discovered date {raw.discovered_raw!r}", field="discovered"
        )

    description = strip_html(raw.description)
    raw_data = dict(raw.raw)
    if description and "description" in raw_data:
        raw_data["description"] = description

    return NormalizedClaim(
        source=source,
        group_name=raw.group_name,
        victim_name=raw.victim_name,
        discovered_date=discovered,
        country=raw.country,
        website=raw.website,
        description=description,
        api_sector=raw.api_provided_sector,
        activity=raw.activity,
        source_url=raw.source_url,
        raw_data=raw_data,
    )


def _seed_actors(resolver: ActorResolver, seeds: Iterable[ActorSeed]) -> None:
    for seed in seeds:
        try:
            resolver.resolve(seed.name, description=seed.description, metadata=seed.metadata)
        except (MalformedRecord, ResolutionConflict, WriteFailure) as e:
            logger.warning(f"Could not seed actor {seed.name!r}: {e}")


def ingest_claims(
    conn: sqlite3.Connection,
    source: str,
    claims: Sequence[RawClaim],
    seeds: Optional[Iterable[ActorSeed]] = None,
    *,
    classifier: Callable[..., str] = classify_sector,
    cache: Optional[ActorCache] = None,
) -> RunStats:
    """Resolve and upsert one batch of claims for `source`."""
    stats = RunStats(source=source, records_processed=len(claims))
    resolver = ActorResolver(conn, cache, source=source)
    deduplicator = IncidentDeduplicator(conn, source, classifier=classifier)

    if seeds:
        _seed_actors(resolver, seeds)

    for raw in claims:
        try:
            claim = normalize_claim(raw, source)
        except MalformedRecord as e:
            logger.debug(f"{source}: skipping malformed claim ({e})")
            stats.record(UpsertOutcome.SKIPPED_MALFORMED)
            continue

        try:
            actor_id, _ = resolver.resolve(claim.group_name)
        except (ResolutionConflict, WriteFailure) as e:
            logger.warning(f"{source}: could not resolve actor {claim.group_name!r}: {e}")
            stats.record(UpsertOutcome.FAILED)
            continue

        stats.record(deduplicator.upsert(claim, actor_id))

    stats.actors_created = resolver.created_count
    try:
        stats.actors_refreshed = resolver.refresh_last_seen()
    except sqlite3.Error as e:
        logger.warning(f"{source}: could not refresh actor last_seen: {e}")

    return stats


def _record_run(conn: sqlite3.Connection, stats: RunStats) -> None:
    try:
        record_sync_run(
            conn,
            source=stats.source,
            status=stats.status,
            records_processed=stats.records_processed,
            records_added=stats.records_added,
            records_updated=stats.records_updated,
            completed_at=now_utc_iso(),
            error_message=stats.error_message,
            metadata=stats.details(),
        )
    except sqlite3.Error as e:
        logger.warning(f"Could not write sync_log for {stats.source}: {e}")


def run_source(
    conn: sqlite3.Connection,
    adapter: FeedAdapter,
    client: Optional[HttpClient] = None,
) -> RunStats:
    """
    Fetch and ingest one feed.

    A failing group catalogue only loses the pre-seeding. A failing claims
    fetch aborts the run: it is logged to sync_log with status "error" and
    the TransientFetchError is re-raised.
    """
    logger.info(f"Ingesting {adapter.name} ...")

    seeds: List[ActorSeed] = []
    if adapter.fetch_groups is not None:
        try:
            seeds = adapter.fetch_groups(client)
            logger.info(f"{adapter.name}: {len(seeds)} groups in catalogue")
        except TransientFetchError as e:
            logger.warning(f"{adapter.name}: failed to fetch groups: {e}")

    try:
        claims = adapter.build_claims(client)
    except TransientFetchError as e:
        logger.error(f"{adapter.name}: run aborted: {e}", exc_info=True)
        _record_run(conn, RunStats(source=adapter.name, status="error", error_message=str(e)))
        raise

    logger.info(f"{adapter.name}: {len(claims)} claims fetched")
    stats = ingest_claims(conn, adapter.name, claims, seeds)
    _record_run(conn, stats)
    logger.info(stats.summary())
    return stats


def run_sources(
    conn: sqlite3.Connection,
    source_names: Optional[Sequence[str]] = None,
    client: Optional[HttpClient] = None,
) -> Dict[str, Optional[RunStats]]:
    """
    Run several feeds one after another.

    Each feed fails independently; a failed feed maps to None in the result.
    """
    names = list(dict.fromkeys(source_names or SOURCE_REGISTRY.keys()))
    unknown = [name for name in names if get_adapter(name) is None]
    if unknown:
        raise ValueError(f"Unknown source(s): {', '.join(unknown)}")

    results: Dict[str, Optional[RunStats]] = {}
    for name in names:
        try:
            results[name] = run_source(conn, get_adapter(name), client)
        except PipelineError as e:
            logger.error(f"{name}: ingestion failed: {e}")
            results[name] = None
    return results
