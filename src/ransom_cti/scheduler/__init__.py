"""
Scheduler module for continuous feed ingestion.

Schedules:
- Every N hours per feed (independent jobs)
- Daily: sector reclassification pass
"""

from ransom_cti.scheduler.scheduler import IngestionScheduler

__all__ = ["IngestionScheduler"]
