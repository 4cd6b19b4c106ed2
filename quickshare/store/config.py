"""ストア設定。

環境変数（.env を含む）から読み込む。プロセス起動時に一度だけ組み立て、
不正な値はその場で ValueError にする。
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from store.blobs import DEFAULT_ALLOWED_EXTENSIONS
from store.models import ConsumptionPolicy

DEFAULT_MAX_FILE_SIZE = 50 * 1024 * 1024
DEFAULT_TTL_SECONDS = 3600.0
DEFAULT_SWEEP_INTERVAL_SECONDS = 600.0


def _positive_float(environ: Mapping[str, str], key: str, default: float) -> float:
    raw = environ.get(key, "").strip()
    if not raw:
        return default
    value = float(raw)
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {raw!r}")
    return value


def _positive_int(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key, "").strip()
    if not raw:
        return default
    value = int(raw)
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {raw!r}")
    return value


def _allowed_extensions(raw: str | None) -> frozenset[str] | None:
    """カンマ区切りの拡張子リスト。'*' は制限なし（None）。"""
    if raw is None or not raw.strip():
        return DEFAULT_ALLOWED_EXTENSIONS
    if raw.strip() == "*":
        return None
    return frozenset(e.strip().lower().lstrip(".") for e in raw.split(",") if e.strip())


@dataclass
class StoreSettings:
    storage_root: Path = Path("uploads")
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    ttl_seconds: float = DEFAULT_TTL_SECONDS
    sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS
    consumption_policy: ConsumptionPolicy = ConsumptionPolicy.TTL_ONLY
    allowed_extensions: frozenset[str] | None = field(default=DEFAULT_ALLOWED_EXTENSIONS)
    tombstone_seconds: float = DEFAULT_TTL_SECONDS
    public_base_url: str = ""
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "StoreSettings":
        """環境変数から設定を組み立てる。

        Args:
            environ: 読み込み元。省略時は .env を読み込んだ上で os.environ を使う
        """
        if environ is None:
            load_dotenv(os.path.join(os.getcwd(), ".env"))
            environ = os.environ

        ttl = _positive_float(environ, "QUICKSHARE_TTL_SECONDS", DEFAULT_TTL_SECONDS)
        return cls(
            storage_root=Path(environ.get("QUICKSHARE_STORAGE_ROOT", "").strip() or "uploads"),
            max_file_size=_positive_int(environ, "QUICKSHARE_MAX_FILE_SIZE", DEFAULT_MAX_FILE_SIZE),
            ttl_seconds=ttl,
            sweep_interval_seconds=_positive_float(
                environ, "QUICKSHARE_SWEEP_INTERVAL_SECONDS", DEFAULT_SWEEP_INTERVAL_SECONDS
            ),
            consumption_policy=ConsumptionPolicy.parse(
                environ.get("QUICKSHARE_CONSUMPTION_POLICY"), default=ConsumptionPolicy.TTL_ONLY
            ),
            allowed_extensions=_allowed_extensions(environ.get("QUICKSHARE_ALLOWED_TYPES")),
            tombstone_seconds=_positive_float(environ, "QUICKSHARE_TOMBSTONE_SECONDS", ttl),
            public_base_url=environ.get("QUICKSHARE_PUBLIC_BASE_URL", "").strip().rstrip("/"),
            log_level=(environ.get("LOG_LEVEL", "").strip() or "INFO").upper(),
        )
