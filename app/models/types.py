from sqlalchemy import LargeBinary
from sqlalchemy.types import TypeDecorator

from app.core.fernet_crypto import decrypt_fernet_token, get_primary_fernet


class EncryptedString(TypeDecorator):
    """Transparent encryption/decryption for string fields using Fernet."""

    impl = LargeBinary
    cache_ok = True

    def __init__(self, *, secret: str | None = None, **kwargs):
        super().__init__(**kwargs)
        self._secret = secret

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        token = get_primary_fernet(secret=self._secret).encrypt(str(value).encode("utf-8"))
        return bytes(token)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return decrypt_fernet_token(bytes(value), secret=self._secret).decode("utf-8")


__all__ = ["EncryptedString"]
