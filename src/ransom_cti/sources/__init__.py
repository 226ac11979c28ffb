"""
Feed adapters.

Each module exposes SOURCE_NAME, fetch_groups() and build_claims():
- ransomware_live: api.ransomware.live recent victims
- ransomlook: ransomlook.io recent posts
- ransomwatch: ransomwatch posts.json mirror
"""
