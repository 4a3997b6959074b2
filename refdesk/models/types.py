"""
Column types shared by the job and league models.

Production runs on PostgreSQL (JSONB, native UUID); the test suite runs the
same metadata on SQLite, so every type here degrades to a portable variant.
"""

from sqlalchemy import JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB

JSONType = JSON().with_variant(JSONB(), "postgresql")
UUIDType = Uuid(as_uuid=True)
