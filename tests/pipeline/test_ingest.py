"""Tests for the per-feed batch driver."""

import sqlite3
from datetime import date
from unittest.mock import MagicMock, patch

import pytest

from ransom_cti.core.db import (
    count_actors,
    count_incidents,
    find_actor_by_name,
    find_incident_by_key,
    insert_actor,
    load_actor,
    load_sync_runs,
)
from ransom_cti.core.errors import MalformedRecord, TransientFetchError
from ransom_cti.core.models import ActorSeed, RawClaim
from ransom_cti.core.sectors import reclassify_incidents
from ransom_cti.core.sources import FeedAdapter
from ransom_cti.pipeline.ingest import ingest_claims, normalize_claim, run_source, run_sources
from ransom_cti.sources import ransomware_live, ransomwatch


def _adapter(name, claims=None, seeds=None, error=None, groups_error=None):
    build_claims = MagicMock(side_effect=error) if error else MagicMock(return_value=claims or [])
    fetch_groups = (
        MagicMock(side_effect=groups_error) if groups_error else MagicMock(return_value=seeds or [])
    )
    return FeedAdapter(name=name, build_claims=build_claims, fetch_groups=fetch_groups)


class TestNormalizeClaim:
    def test_valid_claim(self, make_claim):
        raw = make_claim(
            discovered_raw="2024-03-01T23:10:00",
            description="<p>Regional <b>clinic</b></p>",
            raw={"description": "<p>Regional <b>clinic</b></p>"},
        )
        claim = normalize_claim(raw, "X")

        assert claim.source == "X"
        assert claim.discovered_date == date(2024, 3, 1)
        assert claim.description == "Regional clinic"
        assert claim.raw_data["description"] == "Regional clinic"

    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"group_name": ""}, "group_name"),
            ({"victim_name": "  "}, "victim_name"),
            ({"discovered_raw": ""}, "discovered"),
            ({"discovered_raw": "March 2024"}, "discovered"),
            ({"discovered_raw": "garbage"}, "discovered"),
        ],
    )
    def test_malformed(self, make_claim, overrides, field):
        with pytest.raises(MalformedRecord) as exc_info:
            normalize_claim(make_claim(**overrides), "X")
        assert exc_info.value.field == field


class TestIngestClaims:
    def test_counts(self, conn, make_claim):
        claims = [
            make_claim(victim_name="A"),
            make_claim(victim_name="B"),
            make_claim(victim_name="A"),
            make_claim(victim_name="C", discovered_raw="not a date"),
            make_claim(group_name=""),
        ]

        stats = ingest_claims(conn, "X", claims)

        assert stats.records_processed == 5
        assert stats.created == 2
        assert stats.skipped_duplicate == 1
        assert stats.skipped_malformed == 2
        assert stats.failed == 0
        assert stats.actors_created == 1
        assert stats.actors_refreshed == 1
        assert count_incidents(conn) == 2

    def test_cross_source_corroboration(self, conn, make_claim):
        ingest_claims(conn, "X", [make_claim(group_name="Cl0p", discovered_raw="2024-03-01")])
        stats = ingest_claims(
            conn, "Y", [make_claim(group_name="cl0p", discovered_raw="2024-03-01T23:10:00")]
        )

        assert stats.corroborated == 1
        assert stats.records_updated == 1
        assert stats.actors_created == 0
        assert count_actors(conn) == 1
        assert count_incidents(conn) == 1

        actor = find_actor_by_name(conn, "CL0P")
        assert actor.name == "Cl0p"
        incident = find_incident_by_key(conn, actor.id, "Foo Inc", date(2024, 3, 1))
        assert incident.source.to_list() == ["X", "Y"]
        assert incident.corroborated is True

    def test_replay_is_idempotent(self, conn, make_claim):
        claims = [make_claim(victim_name="A"), make_claim(victim_name="B")]
        ingest_claims(conn, "X", claims)

        stats = ingest_claims(conn, "X", claims)

        assert stats.created == 0
        assert stats.skipped_duplicate == 2
        assert count_incidents(conn) == 2

    def test_last_seen_is_latest_incident(self, conn, make_claim):
        ingest_claims(
            conn,
            "X",
            [
                make_claim(victim_name="A", discovered_raw="2024-01-05"),
                make_claim(victim_name="B", discovered_raw="2024-02-10"),
            ],
        )

        actor = find_actor_by_name(conn, "LockBit")
        assert load_actor(conn, actor.id).last_seen == date(2024, 2, 10)

    def test_seeds_create_actors_with_metadata(self, conn, make_claim):
        seeds = [
            ActorSeed(name="Akira", description="Since 2023", metadata={"url": "http://a"}),
            ActorSeed(name=""),
        ]

        stats = ingest_claims(conn, "X", [make_claim(group_name="akira")], seeds)

        assert stats.actors_created == 1
        assert stats.created == 1
        actor = find_actor_by_name(conn, "Akira")
        assert actor.description == "Since 2023"
        assert actor.metadata == {"url": "http://a"}

    def test_alias_resolves_to_canonical_actor(self, conn, make_claim):
        ingest_claims(conn, "X", [make_claim(group_name="ALPHV", victim_name="A")])
        ingest_claims(conn, "Y", [make_claim(group_name="BlackCat", victim_name="A")])

        assert count_actors(conn) == 1
        assert count_incidents(conn) == 1

    def test_actor_lookup_error_fails_one_claim(self, conn, make_claim):
        def insert_or_conflict(connection, actor):
            if actor.name == "Ghost":
                raise sqlite3.IntegrityError("UNIQUE constraint failed")
            return insert_actor(connection, actor)

        claims = [make_claim(group_name="Ghost"), make_claim(group_name="Akira")]
        with patch("ransom_cti.core.actors.insert_actor", side_effect=insert_or_conflict), patch(
            "ransom_cti.core.actors.find_actor_by_name",
            side_effect=sqlite3.OperationalError("database is locked"),
        ):
            stats = ingest_claims(conn, "X", claims)

        assert stats.failed == 1
        assert stats.created == 1
        assert count_incidents(conn) == 1

    def test_feed_industry_survives_reclassification(self, conn):
        row = {"group": "Akira", "victim": "Acme Bank", "discovered": "2024-03-01", "industry": "Healthcare"}
        ingest_claims(conn, "ransomware.live", [ransomware_live.row_to_claim(row)])
        actor = find_actor_by_name(conn, "Akira")
        assert find_incident_by_key(conn, actor.id, "Acme Bank", date(2024, 3, 1)).victim_sector == "healthcare"

        reclassify_incidents(conn)

        incident = find_incident_by_key(conn, actor.id, "Acme Bank", date(2024, 3, 1))
        assert incident.victim_sector == "healthcare"
        assert incident.raw_data["industry"] == "Healthcare"


class TestRunSource:
    def test_success_writes_sync_log(self, conn, make_claim):
        adapter = _adapter("X", claims=[make_claim(), make_claim(victim_name="Bar")])

        stats = run_source(conn, adapter)

        assert stats.status == "success"
        runs = load_sync_runs(conn, "X")
        assert len(runs) == 1
        assert runs[0]["status"] == "success"
        assert runs[0]["records_processed"] == 2
        assert runs[0]["records_added"] == 2
        assert runs[0]["records_updated"] == 0
        assert runs[0]["metadata"]["created"] == 2
        assert runs[0]["completed_at"]

    def test_fetch_error_logged_and_raised(self, conn):
        adapter = _adapter("X", error=TransientFetchError("HTTP 503", url="http://x"))

        with pytest.raises(TransientFetchError):
            run_source(conn, adapter)

        runs = load_sync_runs(conn, "X")
        assert runs[0]["status"] == "error"
        assert "HTTP 503" in runs[0]["error_message"]
        assert count_incidents(conn) == 0

    def test_groups_failure_does_not_abort(self, conn, make_claim):
        adapter = _adapter("X", claims=[make_claim()], groups_error=TransientFetchError("down"))

        stats = run_source(conn, adapter)

        assert stats.created == 1

    def test_client_passed_through(self, conn):
        adapter = _adapter("X")
        client = MagicMock()

        run_source(conn, adapter, client)

        adapter.build_claims.assert_called_once_with(client)
        adapter.fetch_groups.assert_called_once_with(client)

    def test_error_payload_records_error_run(self, conn):
        adapter = FeedAdapter(name="ransomwatch", build_claims=ransomwatch.build_claims)
        client = MagicMock()
        client.get_json.return_value = {"error": "rate limited"}

        with pytest.raises(TransientFetchError):
            run_source(conn, adapter, client)

        runs = load_sync_runs(conn, "ransomwatch")
        assert runs[0]["status"] == "error"
        assert runs[0]["records_added"] == 0


class TestRunSources:
    def test_failure_isolated(self, conn, make_claim, monkeypatch):
        registry = {
            "bad": _adapter("bad", error=TransientFetchError("down")),
            "good": _adapter("good", claims=[make_claim()]),
        }
        monkeypatch.setattr("ransom_cti.pipeline.ingest.SOURCE_REGISTRY", registry)
        monkeypatch.setattr("ransom_cti.pipeline.ingest.get_adapter", registry.get)

        results = run_sources(conn)

        assert results["bad"] is None
        assert results["good"].created == 1
        assert [r["source"] for r in load_sync_runs(conn)] == ["bad", "good"]

    def test_unknown_source_rejected(self, conn):
        with pytest.raises(ValueError):
            run_sources(conn, ["nope"])
