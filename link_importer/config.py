"""Runtime settings, read from environment variables (``.env`` is loaded by the CLI)."""

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_STORE_PATH = Path(".cache") / "link_store.json"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64; rv:134.0) Gecko/20100101 Firefox/134.0"
)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Import pipeline settings."""

    store_path: Path = DEFAULT_STORE_PATH
    fetch_timeout: float = 5.0  # Hard deadline per fetch, seconds
    max_redirects: int = 5
    max_concurrent: int = 5
    user_agent: str = DEFAULT_USER_AGENT

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ``LINK_IMPORTER_*`` environment variables."""
        store = os.environ.get("LINK_IMPORTER_STORE")
        return cls(
            store_path=Path(store) if store else DEFAULT_STORE_PATH,
            fetch_timeout=_env_float("LINK_IMPORTER_TIMEOUT", 5.0),
            max_redirects=_env_int("LINK_IMPORTER_MAX_REDIRECTS", 5),
            max_concurrent=_env_int("LINK_IMPORTER_MAX_CONCURRENT", 5),
            user_agent=os.environ.get("LINK_IMPORTER_USER_AGENT") or DEFAULT_USER_AGENT,
        )
