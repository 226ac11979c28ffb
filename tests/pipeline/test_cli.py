"""Tests for the ingestion CLI."""

from unittest.mock import MagicMock, patch

import pytest

from ransom_cti.core.db import get_connection, init_db, load_sync_runs
from ransom_cti.pipeline.__main__ import main, parse_args


@pytest.fixture(autouse=True)
def _no_logging_setup():
    with patch("ransom_cti.pipeline.__main__.configure_logging"):
        yield


class TestParseArgs:
    def test_defaults_to_all_sources(self):
        args = parse_args([])
        assert args.sources is None
        assert args.reclassify is False

    def test_flag_without_names_selects_none(self):
        args = parse_args(["--sources", "--reclassify"])
        assert args.sources == []
        assert args.reclassify is True

    def test_rejects_unknown_source(self):
        with pytest.raises(SystemExit):
            parse_args(["--sources", "nope"])


class TestMain:
    def test_reclassify_only(self, tmp_path):
        db_path = tmp_path / "cli.db"
        with patch("ransom_cti.pipeline.__main__.run_sources") as run_sources:
            code = main(["--sources", "--reclassify", "--db-path", str(db_path)])

        assert code == 0
        run_sources.assert_not_called()
        conn = get_connection(db_path)
        assert load_sync_runs(conn) == []
        conn.close()

    def test_selected_sources_passed_through(self, tmp_path):
        with patch(
            "ransom_cti.pipeline.__main__.run_sources",
            return_value={"ransomlook": MagicMock()},
        ) as run_sources:
            code = main(["--sources", "ransomlook", "--db-path", str(tmp_path / "cli.db")])

        assert code == 0
        assert run_sources.call_args[0][1] == ["ransomlook"]

    def test_failed_feed_sets_exit_code(self, tmp_path):
        with patch(
            "ransom_cti.pipeline.__main__.run_sources",
            return_value={"ransomlook": MagicMock(), "ransomwatch": None},
        ):
            code = main(["--db-path", str(tmp_path / "cli.db")])

        assert code == 1

    def test_store_initialized(self, tmp_path):
        db_path = tmp_path / "nested" / "cli.db"
        main(["--sources", "--db-path", str(db_path)])

        conn = get_connection(db_path)
        init_db(conn)
        tables = {r["name"] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        assert "incidents" in tables
        conn.close()
