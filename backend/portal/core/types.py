"""Custom SQLAlchemy types for cross-database compatibility"""
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
import uuid


def generate_id():
    """Generate a document id (20 hex chars, like the auto ids of the old store)"""
    return uuid.uuid4().hex[:20]


# JSONB on PostgreSQL, plain JSON text elsewhere (SQLite in dev/tests)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")
