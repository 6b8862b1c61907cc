"""SQLAlchemy declarative base for the worker's ORM models."""

from __future__ import annotations

import uuid

from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Shared declarative base for post_crawler models."""

    type_annotation_map = {
        uuid.UUID: UUID(as_uuid=True),
    }
