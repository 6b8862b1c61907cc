"""Headless-browser crawl pipeline for submitted posts.

Submodules:

- ``filter_cache``       — on-disk TTL cache for block-list text
- ``filter_lists``       — concurrent download of remote block-lists
- ``content_blocker``    — resource-type policy and block-list matching
- ``page_fetcher``       — isolated Playwright page loads
- ``content_extractor``  — metadata and readability extraction
- ``orchestrator``       — fetch + extract with in-process retry
- ``worker``             — per-job persistence and notification
- ``tasks``              — Celery task binding
- ``queue``              — job submission
"""
