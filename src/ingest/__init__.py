"""Source ingestion pipeline.

This package fetches source feeds, parses them into canonical records,
and drives each source through enrichment and batched writes.
"""
