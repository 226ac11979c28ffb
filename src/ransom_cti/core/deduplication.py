"""
Incident deduplication and cross-source corroboration.

Two claims describe the same event when they share the dedup key
(actor_id, victim_name, discovered_date), where the date is a calendar day.
The first source to report an event writes its content; later sources only
add their tag to the provenance set and mark the incident corroborated.
"""

import logging
import sqlite3
from typing import Callable, Dict

from ransom_cti.core import config
from ransom_cti.core.db import find_incident_by_key, insert_incident, update_incident
from ransom_cti.core.errors import WriteFailure
from ransom_cti.core.models import (
    Incident,
    NormalizedClaim,
    SourceSet,
    UpsertOutcome,
    make_incident_id,
)
from ransom_cti.core.sectors import classify_sector

logger = logging.getLogger(__name__)


def _classify_claim(classifier: Callable[..., str], claim: NormalizedClaim) -> str:
    return classifier(
        victim_name=claim.victim_name,
        website=claim.website,
        description=claim.description,
        api_sector=claim.api_sector,
        activity=claim.activity,
    )


class IncidentDeduplicator:
    """
    Upsert normalized claims for one adapter (`source`).

    The classifier is only consulted when an incident is created; a
    corroborating source never changes the stored sector.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        source: str,
        classifier: Callable[..., str] = classify_sector,
    ):
        self.conn = conn
        self.source = source
        self.classifier = classifier

    def upsert(self, claim: NormalizedClaim, actor_id: str) -> UpsertOutcome:
        if claim.discovered_date is None:
            logger.debug(f"Skipping claim for '{claim.victim_name}': no valid discovered date")
            return UpsertOutcome.SKIPPED_MALFORMED

        try:
            existing = find_incident_by_key(
                self.conn, actor_id, claim.victim_name, claim.discovered_date
            )
            if existing is None:
                created = self._create(claim, actor_id)
                if created:
                    return UpsertOutcome.CREATED
                # Lost an insert race; the row exists now
                existing = find_incident_by_key(
                    self.conn, actor_id, claim.victim_name, claim.discovered_date
                )
                if existing is None:
                    raise WriteFailure(
                        f"Insert conflicted but no incident found for '{claim.victim_name}'"
                    )
            return self._corroborate(existing)
        except (WriteFailure, sqlite3.Error) as e:
            logger.warning(f"Upsert failed for '{claim.victim_name}': {e}")
            return UpsertOutcome.FAILED

    def _create(self, claim: NormalizedClaim, actor_id: str) -> bool:
        """Insert a new incident. Returns False if the dedup key already exists."""
        raw_data: Dict = dict(claim.raw_data or {})
        raw_data["corroborated"] = False

        incident = Incident(
            id=make_incident_id(actor_id, claim.victim_name, claim.discovered_date),
            actor_id=actor_id,
            victim_name=claim.victim_name,
            victim_sector=_classify_claim(self.classifier, claim),
            discovered_date=claim.discovered_date,
            source=SourceSet([self.source]),
            victim_country=claim.country,
            victim_website=claim.website,
            status=config.DEFAULT_INCIDENT_STATUS,
            source_url=claim.source_url,
            raw_data=raw_data,
        )
        try:
            insert_incident(self.conn, incident)
        except sqlite3.IntegrityError:
            logger.debug(f"Incident {incident.id} already exists, corroborating instead")
            return False
        except sqlite3.Error as e:
            raise WriteFailure(f"Failed to insert incident {incident.id}: {e}") from e
        return True

    def _corroborate(self, existing: Incident) -> UpsertOutcome:
        if self.source in existing.source:
            return UpsertOutcome.SKIPPED_DUPLICATE

        sources = SourceSet(existing.source)
        sources.add(self.source)
        raw_data = dict(existing.raw_data or {})
        raw_data["corroborated"] = True

        try:
            update_incident(self.conn, existing.id, sources, raw_data)
        except sqlite3.Error as e:
            raise WriteFailure(f"Failed to update incident {existing.id}: {e}") from e

        logger.debug(f"Corroborated incident {existing.id} with {self.source} ({sources.display()})")
        return UpsertOutcome.CORROBORATED
