"""Mapping layer - transform row dicts into typed objects."""

from __future__ import annotations

from resilient_db.mapping.model import ModelMapper
from resilient_db.mapping.protocol import RowMapper

__all__ = [
    "ModelMapper",
    "RowMapper",
]
