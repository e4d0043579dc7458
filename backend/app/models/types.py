"""
Custom column types.
"""
from sqlalchemy import Text
from sqlalchemy.types import TypeDecorator

from app.config import encrypt_value, decrypt_value


class EncryptedString(TypeDecorator):
    """Text column encrypted at rest with the configured Fernet key."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return encrypt_value(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return decrypt_value(value)
