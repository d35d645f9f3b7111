"""Declarative base shared by all models."""

from typing import Any

from sqlalchemy import JSON
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    __abstract__ = True

    type_annotation_map: dict[type, Any] = {
        dict[str, Any]: JSON,
        list[str]: JSON,
    }
