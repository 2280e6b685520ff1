"""Configuration management for the portal service."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .records import DirectorSeed
from .storage import resolve_database_path

DEFAULT_DIRECTOR = DirectorSeed(
    email="director@kinetic-school.local",
    password="kinetic-director",
    name="School Director",
)

_FALSEY = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class PortalConfig:
    """Runtime settings for the web service and CLI."""

    database_path: Path
    director: DirectorSeed = DEFAULT_DIRECTOR
    session_secret: Optional[str] = None
    secure_cookies: bool = False

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "PortalConfig":
        """Create a :class:`PortalConfig` from raw dictionary data."""

        raw_db = data.get("database_path")
        if raw_db:
            db_path = Path(str(raw_db)).expanduser()
            if not db_path.is_absolute() and base_path is not None:
                db_path = base_path / db_path
            database_path = db_path.resolve(strict=False)
        else:
            database_path = resolve_database_path(None)

        director_raw = data.get("director") or {}
        if not isinstance(director_raw, dict):
            raise ValueError("The 'director' section must be a mapping")
        director = DirectorSeed(
            email=str(director_raw.get("email", DEFAULT_DIRECTOR.email)),
            password=str(director_raw.get("password", DEFAULT_DIRECTOR.password)),
            name=str(director_raw.get("name", DEFAULT_DIRECTOR.name)),
        )

        secret = data.get("session_secret")
        return PortalConfig(
            database_path=database_path,
            director=director,
            session_secret=str(secret) if secret else None,
            secure_cookies=bool(data.get("secure_cookies", False)),
        )


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "portal.yaml").resolve(strict=False)
    return candidate


def _apply_environment(config: PortalConfig, environ: Mapping[str, str]) -> PortalConfig:
    overrides: Dict[str, object] = {}
    if environ.get("PORTAL_DB_PATH"):
        overrides["database_path"] = resolve_database_path(environ["PORTAL_DB_PATH"])
    if environ.get("PORTAL_SESSION_SECRET"):
        overrides["session_secret"] = environ["PORTAL_SESSION_SECRET"]
    secure = environ.get("PORTAL_SESSION_SECURE")
    if secure is not None:
        overrides["secure_cookies"] = secure.strip().lower() not in _FALSEY

    director = config.director
    director = replace(
        director,
        email=environ.get("PORTAL_DIRECTOR_EMAIL") or director.email,
        password=environ.get("PORTAL_DIRECTOR_PASSWORD") or director.password,
        name=environ.get("PORTAL_DIRECTOR_NAME") or director.name,
    )
    overrides["director"] = director
    return replace(config, **overrides)


def load_config(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> PortalConfig:
    """Load settings from YAML (when the file exists) and apply environment overrides."""

    env = os.environ if environ is None else environ
    path = config_path or resolve_config_path(env.get("PORTAL_CONFIG"))

    raw: Mapping[str, object] = {}
    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        raw = loaded

    config = PortalConfig.from_dict(raw, base_path=path.parent)
    return _apply_environment(config, env)


__all__ = ["DEFAULT_DIRECTOR", "PortalConfig", "load_config", "resolve_config_path"]
