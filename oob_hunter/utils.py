from __future__ import annotations
import secrets, string, uuid
from .errors import ConfigurationError

# DNS labels are case-insensitive, keep ids lowercase
ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_random_id(length: int) -> str:
    """Return ``length`` unpredictable characters from :data:`ID_ALPHABET`."""
    if length < 1:
        raise ConfigurationError(f"identifier length must be >= 1, got {length}")
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


def new_token() -> str:
    return str(uuid.uuid4())
