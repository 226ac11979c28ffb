"""Tests for incident deduplication and corroboration."""

import sqlite3
from datetime import date
from unittest.mock import MagicMock, patch

from ransom_cti.core.actors import ActorResolver
from ransom_cti.core.db import count_incidents, find_incident_by_key, get_incident_sources
from ransom_cti.core.deduplication import IncidentDeduplicator
from ransom_cti.core.models import NormalizedClaim, UpsertOutcome


def _claim(source, victim="Foo Inc", day=date(2024, 3, 1), **kwargs):
    return NormalizedClaim(
        source=source,
        group_name=kwargs.pop("group_name", "Cl0p"),
        victim_name=victim,
        discovered_date=day,
        raw_data=kwargs.pop("raw_data", {"victim": victim}),
        **kwargs,
    )


def _actor(conn, name="Cl0p"):
    actor_id, _ = ActorResolver(conn, source="test").resolve(name)
    return actor_id


class TestCreate:
    def test_new_incident_created(self, conn):
        actor_id = _actor(conn)
        outcome = IncidentDeduplicator(conn, "X").upsert(_claim("X"), actor_id)

        assert outcome is UpsertOutcome.CREATED
        incident = find_incident_by_key(conn, actor_id, "Foo Inc", date(2024, 3, 1))
        assert incident.source == {"X"}
        assert incident.raw_data == {"victim": "Foo Inc", "corroborated": False}
        assert incident.status == "claimed"

    def test_sector_classified_at_creation(self, conn):
        actor_id = _actor(conn)
        claim = _claim("X", victim="First National Bank")

        IncidentDeduplicator(conn, "X").upsert(claim, actor_id)

        incident = find_incident_by_key(conn, actor_id, "First National Bank", date(2024, 3, 1))
        assert incident.victim_sector == "finance"

    def test_missing_date_is_malformed(self, conn):
        actor_id = _actor(conn)
        outcome = IncidentDeduplicator(conn, "X").upsert(_claim("X", day=None), actor_id)

        assert outcome is UpsertOutcome.SKIPPED_MALFORMED
        assert count_incidents(conn) == 0


class TestCorroboration:
    def test_same_source_is_duplicate(self, conn):
        actor_id = _actor(conn)
        dedup = IncidentDeduplicator(conn, "X")

        dedup.upsert(_claim("X"), actor_id)
        outcome = dedup.upsert(_claim("X"), actor_id)

        assert outcome is UpsertOutcome.SKIPPED_DUPLICATE
        assert count_incidents(conn) == 1

    def test_second_source_corroborates(self, conn):
        actor_id = _actor(conn)
        IncidentDeduplicator(conn, "X").upsert(_claim("X", victim="Summit Hospital"), actor_id)

        classifier = MagicMock(return_value="retail")
        outcome = IncidentDeduplicator(conn, "Y", classifier=classifier).upsert(
            _claim("Y", victim="Summit Hospital", raw_data={"post_title": "other content"}),
            actor_id,
        )

        assert outcome is UpsertOutcome.CORROBORATED
        classifier.assert_not_called()
        incident = find_incident_by_key(conn, actor_id, "Summit Hospital", date(2024, 3, 1))
        assert incident.source.to_list() == ["X", "Y"]
        assert incident.corroborated is True
        assert incident.victim_sector == "healthcare"
        # first writer's content is kept
        assert incident.raw_data["victim"] == "Summit Hospital"
        assert "post_title" not in incident.raw_data

    def test_third_replay_is_duplicate(self, conn):
        actor_id = _actor(conn)
        IncidentDeduplicator(conn, "X").upsert(_claim("X"), actor_id)
        IncidentDeduplicator(conn, "Y").upsert(_claim("Y"), actor_id)

        outcome = IncidentDeduplicator(conn, "Y").upsert(_claim("Y"), actor_id)

        assert outcome is UpsertOutcome.SKIPPED_DUPLICATE
        incident = find_incident_by_key(conn, actor_id, "Foo Inc", date(2024, 3, 1))
        assert len(incident.source) == 2

    def test_substring_source_tags_are_distinct(self, conn):
        actor_id = _actor(conn)
        IncidentDeduplicator(conn, "ransomware.live").upsert(_claim("ransomware.live"), actor_id)

        outcome = IncidentDeduplicator(conn, "ransomware").upsert(_claim("ransomware"), actor_id)

        assert outcome is UpsertOutcome.CORROBORATED
        incident = find_incident_by_key(conn, actor_id, "Foo Inc", date(2024, 3, 1))
        assert incident.source == {"ransomware.live", "ransomware"}

    def test_different_day_is_new_incident(self, conn):
        actor_id = _actor(conn)
        dedup = IncidentDeduplicator(conn, "X")

        dedup.upsert(_claim("X", day=date(2024, 3, 1)), actor_id)
        outcome = dedup.upsert(_claim("X", day=date(2024, 3, 2)), actor_id)

        assert outcome is UpsertOutcome.CREATED
        assert count_incidents(conn) == 2


class TestRaceRecovery:
    def test_lost_insert_race_corroborates(self, conn):
        actor_id = _actor(conn)
        IncidentDeduplicator(conn, "X").upsert(_claim("X"), actor_id)

        # The lookup misses (the other writer had not committed yet), the insert then conflicts
        real_find = find_incident_by_key
        calls = []

        def flaky_find(*args):
            calls.append(args)
            return None if len(calls) == 1 else real_find(*args)

        with patch("ransom_cti.core.deduplication.find_incident_by_key", side_effect=flaky_find):
            outcome = IncidentDeduplicator(conn, "Y").upsert(_claim("Y"), actor_id)

        assert outcome is UpsertOutcome.CORROBORATED
        assert count_incidents(conn) == 1
        incident = real_find(conn, actor_id, "Foo Inc", date(2024, 3, 1))
        assert get_incident_sources(conn, incident.id) == {"X", "Y"}


class TestWriteFailures:
    def test_insert_error_is_failed(self, conn):
        actor_id = _actor(conn)
        with patch(
            "ransom_cti.core.deduplication.insert_incident",
            side_effect=sqlite3.OperationalError("disk I/O error"),
        ):
            outcome = IncidentDeduplicator(conn, "X").upsert(_claim("X"), actor_id)

        assert outcome is UpsertOutcome.FAILED

    def test_update_error_is_failed(self, conn):
        actor_id = _actor(conn)
        IncidentDeduplicator(conn, "X").upsert(_claim("X"), actor_id)

        with patch(
            "ransom_cti.core.deduplication.update_incident",
            side_effect=sqlite3.OperationalError("database is locked"),
        ):
            outcome = IncidentDeduplicator(conn, "Y").upsert(_claim("Y"), actor_id)

        assert outcome is UpsertOutcome.FAILED

    def test_unknown_actor_is_failed(self, conn):
        outcome = IncidentDeduplicator(conn, "X").upsert(_claim("X"), "actor_missing")

        assert outcome is UpsertOutcome.FAILED
        assert count_incidents(conn) == 0
