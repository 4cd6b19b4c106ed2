# Records kept in the metadata registry

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

MAX_NAME_LENGTH = 255

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


class ConsumptionPolicy(str, Enum):
    TTL_ONLY = "ttl"
    SINGLE_USE = "single-use"

    @classmethod
    def parse(cls, value: "str | ConsumptionPolicy | None", default: "ConsumptionPolicy | None" = None) -> "ConsumptionPolicy":
        """Accept the enum, its value, or a few spellings used by clients."""
        if isinstance(value, cls):
            return value
        text = (value or "").strip().lower().replace("_", "-")
        if not text:
            if default is None:
                raise ValueError("consumption policy is required")
            return default
        if text in ("ttl", "ttl-only"):
            return cls.TTL_ONLY
        if text in ("single-use", "single", "once", "one-time"):
            return cls.SINGLE_USE
        raise ValueError(f"unknown consumption policy: {value!r}")


def sanitize_filename(name: str | None, fallback: str = "file") -> str:
    """Strip directory parts and control characters from a client file name.

    The result is only ever stored as metadata and echoed into headers;
    blobs on disk are named by object id.
    """
    if not name:
        return fallback
    base = re.split(r"[\\/]", name)[-1]
    base = _CONTROL_CHARS.sub("", base).strip().strip(".")
    if not base:
        return fallback
    return base[:MAX_NAME_LENGTH]


@dataclass
class ObjectRecord:
    id: str
    storage_path: Path
    original_name: str
    mime_type: str
    size_bytes: int
    created_at: float
    expires_at: float
    policy: ConsumptionPolicy = ConsumptionPolicy.TTL_ONLY
    # Set by the lifecycle manager; cleared whenever the object is deleted
    deletion_handle: Any = field(default=None, repr=False, compare=False)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class ObjectStatus:
    id: str
    original_name: str
    mime_type: str
    size_bytes: int
    expires_at: float
    policy: ConsumptionPolicy

    @classmethod
    def from_record(cls, record: ObjectRecord) -> "ObjectStatus":
        return cls(
            id=record.id,
            original_name=record.original_name,
            mime_type=record.mime_type,
            size_bytes=record.size_bytes,
            expires_at=record.expires_at,
            policy=record.policy,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "exists": True,
            "id": self.id,
            "expiresAt": int(self.expires_at * 1000),
            "size": self.size_bytes,
            "originalName": self.original_name,
            "mimeType": self.mime_type,
            "policy": self.policy.value,
        }
