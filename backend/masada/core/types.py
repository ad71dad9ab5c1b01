"""Column types shared by the models"""
import uuid

from sqlalchemy import String, TypeDecorator
from sqlalchemy.dialects import postgresql


def generate_uuid() -> str:
    return str(uuid.uuid4())


class GUID(TypeDecorator):
    """
    UUID primary/foreign keys handled as plain strings in Python.

    PostgreSQL stores them in its native UUID column; SQLite (dev and tests)
    falls back to VARCHAR(36).
    """
    impl = String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.UUID(as_uuid=False))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else str(value)
