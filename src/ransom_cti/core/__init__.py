"""
Core building blocks: configuration, models, store, and the resolution,
classification and deduplication logic shared by every feed.
"""
