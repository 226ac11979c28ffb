"""Tests for the ingestion scheduler."""

from unittest.mock import MagicMock, patch

import schedule

from ransom_cti.scheduler.scheduler import IngestionScheduler


def _scheduler(tmp_path, intervals=None):
    return IngestionScheduler(
        intervals_hours=intervals or {"ransomware.live": 6, "ransomlook": 6, "ransomwatch": 12},
        reclassify_time="03:00",
        db_path=tmp_path / "sched.db",
        scheduler=schedule.Scheduler(),
    )


class TestRegisterJobs:
    def test_one_job_per_feed_plus_reclassify(self, tmp_path):
        sched = _scheduler(tmp_path)
        sched.register_jobs()

        jobs = sched.scheduler.get_jobs()
        assert len(jobs) == 4
        intervals = sorted(job.interval for job in jobs if job.unit == "hours")
        assert intervals == [6, 6, 12]
        assert any(job.unit == "days" for job in jobs)

    def test_unknown_feed_skipped(self, tmp_path):
        sched = _scheduler(tmp_path, {"ransomlook": 6, "nope": 1})
        sched.register_jobs()

        assert len(sched.scheduler.get_jobs()) == 2

    def test_stop_clears_jobs(self, tmp_path):
        sched = _scheduler(tmp_path)
        sched.register_jobs()
        sched.stop()

        assert sched.scheduler.get_jobs() == []


class TestJobs:
    def test_failing_feed_does_not_stop_others(self, tmp_path):
        sched = _scheduler(tmp_path)
        ok = MagicMock()
        ok.summary.return_value = "ok"

        def fake_run_source(conn, adapter):
            if adapter.name == "ransomlook":
                raise RuntimeError("boom")
            return ok

        with patch("ransom_cti.scheduler.scheduler.run_source", side_effect=fake_run_source) as run_source, \
                patch("ransom_cti.scheduler.scheduler.reclassify_incidents", return_value={}) as reclassify:
            sched.run_all_once()

        assert run_source.call_count == 3
        reclassify.assert_called_once()
        status = sched.get_status()
        assert set(status["last_runs"]) == {"ransomware.live", "ransomwatch", "reclassify"}

    def test_reclassification_failure_logged(self, tmp_path):
        sched = _scheduler(tmp_path)
        with patch(
            "ransom_cti.scheduler.scheduler.reclassify_incidents",
            side_effect=RuntimeError("boom"),
        ):
            sched._run_reclassification()

        assert "reclassify" not in sched.get_status()["last_runs"]
