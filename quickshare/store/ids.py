# Object identifiers
# Used both as the public token in download URLs and as the blob file name

import re
import secrets

from store.errors import EntropyExhausted

TOKEN_BYTES = 16  # 128 bits

_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{16,64}$")


def generate_id() -> str:
    """Return a new URL-safe token drawn from the OS CSPRNG."""
    try:
        return secrets.token_urlsafe(TOKEN_BYTES)
    except (NotImplementedError, OSError) as e:
        raise EntropyExhausted(f"Cannot generate object id: {e}") from e


def is_valid_id(value: object) -> bool:
    """Shape check. Rejects anything that could escape the storage root."""
    return isinstance(value, str) and _ID_PATTERN.fullmatch(value) is not None
