"""
Ingestion pipeline: per-feed batch driver and run statistics.
"""

from ransom_cti.pipeline.ingest import RunStats, ingest_claims, run_source, run_sources

__all__ = ["RunStats", "ingest_claims", "run_source", "run_sources"]
