"""
Store configuration.

Values come from explicit construction, environment variables, or the
``storage:`` section of a YAML settings file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_NOTIFY_DELAY = 0.1


@dataclass
class StoreConfig:
    """Configuration for the local library store."""

    db_path: str | Path = ":memory:"
    cache_dir: Path | None = None  # Directory for blob handles; temp dir when None
    notify_delay: float = DEFAULT_NOTIFY_DELAY  # Coalescing window for change broadcasts
    default_language: str = "english"
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Create config from environment variables."""
        cache_dir = os.environ.get("BACHATA_MOVES_CACHE_DIR")
        return cls(
            db_path=os.environ.get("BACHATA_MOVES_DB_PATH", ":memory:"),
            cache_dir=Path(cache_dir) if cache_dir else None,
            notify_delay=float(
                os.environ.get("BACHATA_MOVES_NOTIFY_DELAY", str(DEFAULT_NOTIFY_DELAY))
            ),
            default_language=os.environ.get("BACHATA_MOVES_LANGUAGE", "english"),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> StoreConfig:
        """Create config from the ``storage`` section of a YAML settings file.

        ```yaml
        storage:
          db_path: ~/.bachata-moves/library.db
          cache_dir: ~/.bachata-moves/cache
          notify_delay: 0.1
          language: polish
        ```

        Missing keys keep their defaults; a missing file yields the defaults.
        """
        if not path.exists():
            return cls()

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        section = data.get("storage") or {}
        known = {"db_path", "cache_dir", "notify_delay", "language"}

        db_path = section.get("db_path", ":memory:")
        if db_path != ":memory:":
            db_path = Path(db_path).expanduser()
        cache_dir = section.get("cache_dir")

        return cls(
            db_path=db_path,
            cache_dir=Path(cache_dir).expanduser() if cache_dir else None,
            notify_delay=float(section.get("notify_delay", DEFAULT_NOTIFY_DELAY)),
            default_language=section.get("language", "english"),
            extra={k: v for k, v in section.items() if k not in known},
        )
