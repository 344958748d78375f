"""Application settings for the import service and CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

ENV_PREFIX = "FAMILYTREE_"


@dataclass
class Settings:
    """Configuration for storage, uploads, matching and export."""

    # Storage
    database_path: str = "./data/familytree.db"
    upload_dir: str = "/tmp/gedcom-uploads"

    # Owner scope used when a request carries no X-User-Id header
    default_user_id: int = 1

    # Duplicate detection
    duplicate_threshold: int = 70

    # Uploads
    max_upload_size: int = 10 * 1024 * 1024  # 10MB

    # Preview paging
    default_page_size: int = 50

    # Export
    export_version: str = "5.5.1"
    submitter_name: str = "FamilyTree App"

    def __post_init__(self):
        if not 0 <= self.duplicate_threshold <= 100:
            raise ValueError("duplicate_threshold must be between 0 and 100")
        if self.max_upload_size < 1:
            raise ValueError("max_upload_size must be positive")
        if self.default_page_size < 1:
            raise ValueError("default_page_size must be positive")
        if self.export_version not in ("5.5.1", "7.0"):
            raise ValueError(f"Unsupported export version: {self.export_version}")

    @classmethod
    def _coerce(cls, values: dict[str, Any]) -> dict[str, Any]:
        known = {f.name: f for f in fields(cls)}
        coerced = {}
        for name, value in values.items():
            if name not in known or value is None:
                continue
            default = known[name].default
            coerced[name] = int(value) if isinstance(default, int) else str(value)
        return coerced

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Settings:
        """Build settings from FAMILYTREE_* environment variables."""
        environ = os.environ if environ is None else environ
        values = {
            f.name: environ.get(f"{ENV_PREFIX}{f.name.upper()}")
            for f in fields(cls)
        }
        return cls(**cls._coerce(values))

    @classmethod
    def from_yaml(cls, path: str | Path) -> Settings:
        """Load settings from a YAML file. Unknown keys are ignored."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Settings file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Settings file must contain a mapping: {path}")

        return cls(**cls._coerce(data))
