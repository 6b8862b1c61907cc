"""Pydantic schemas for queue payload validation.

Sub-modules:
    crawl — CrawlJob (inbound job payload), JobAttempt
"""

from __future__ import annotations
