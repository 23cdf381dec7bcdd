from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

DEFAULT_DATA_DIR = Path.home() / ".journalsync"
DEFAULT_NETWORK_PORT = 9999


def _load_env_file(env_path: Optional[Path] = None) -> None:
    if env_path is not None:
        if env_path.exists():
            load_dotenv(dotenv_path=env_path)
        return
    load_dotenv()


def _to_bool(value: Optional[str], default: bool = True) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(value: Optional[str], default: int) -> int:
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class RelayConfig:
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    username: Optional[str] = None
    ssl: bool = False

    @classmethod
    def from_env(cls) -> "RelayConfig":
        uri = os.getenv("REDIS_URI")
        if uri:
            return cls.from_uri(uri)

        return cls(
            host=os.getenv("REDIS_HOST", cls.host),
            port=_to_int(os.getenv("REDIS_PORT"), cls.port),
            db=_to_int(os.getenv("REDIS_DB"), cls.db),
            password=os.getenv("REDIS_PASSWORD") or None,
            username=os.getenv("REDIS_USERNAME") or None,
            ssl=_to_bool(os.getenv("REDIS_SSL"), default=False),
        )

    @classmethod
    def from_uri(cls, uri: str) -> "RelayConfig":
        parsed = urlparse(uri)
        if parsed.scheme not in {"redis", "rediss"}:
            raise ValueError(
                f"Unsupported Redis URI scheme: {parsed.scheme!r}")

        db_fragment = parsed.path.lstrip("/")
        return cls(
            host=parsed.hostname or cls.host,
            port=parsed.port or cls.port,
            db=int(db_fragment) if db_fragment else cls.db,
            password=parsed.password or None,
            username=parsed.username or None,
            ssl=parsed.scheme == "rediss",
        )


@dataclass(frozen=True)
class JournalSyncConfig:
    data_dir: Path = DEFAULT_DATA_DIR
    device_name: Optional[str] = None
    relay: RelayConfig = field(default_factory=RelayConfig)
    network_port: int = DEFAULT_NETWORK_PORT
    direct_enabled: bool = True
    bidirectional: bool = True

    @classmethod
    def from_env(cls, *, env_path: Optional[Path] = None) -> "JournalSyncConfig":
        _load_env_file(env_path)

        data_dir_raw = os.getenv("JOURNALSYNC_DATA_DIR")
        data_dir = Path(data_dir_raw).expanduser() if data_dir_raw else DEFAULT_DATA_DIR

        return cls(
            data_dir=data_dir,
            device_name=os.getenv("JOURNALSYNC_DEVICE_NAME") or None,
            relay=RelayConfig.from_env(),
            network_port=_to_int(os.getenv("NETWORK_PORT"), DEFAULT_NETWORK_PORT),
            direct_enabled=_to_bool(os.getenv("JOURNALSYNC_DIRECT"), default=True),
            bidirectional=_to_bool(os.getenv("JOURNALSYNC_BIDIRECTIONAL"), default=True),
        )

    def with_overrides(self, **overrides) -> "JournalSyncConfig":
        values = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **values)
