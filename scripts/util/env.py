from __future__ import annotations

import os
from pathlib import Path

_TRUTHY = {"1", "true", "yes", "on"}
DEFAULT_SERVICE_URL = "http://localhost:8000"


def load_env(env_path: Path | str | None = None, *, override: bool = False) -> int:
    """Export ``KEY=VALUE`` pairs from a dotenv file; returns how many were set.

    Without a path, ``.env`` in the working directory and then at the repo root are tried.
    """
    candidates = [Path(env_path)] if env_path else [Path(".env"), Path(__file__).resolve().parents[2] / ".env"]
    path = next((candidate for candidate in candidates if candidate.is_file()), None)
    if path is None:
        return 0
    exported = 0
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if line.startswith("export "):
            line = line[len("export "):]
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        if not override and key in os.environ:
            continue
        os.environ[key] = value.strip().strip("\"'")
        exported += 1
    return exported


def env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    return default if raw is None else raw.strip().lower() in _TRUTHY


def normalize_base_url(url: str | None = None) -> str:
    """Service base URL without a trailing slash; falls back to ``RECONCILER_URL``."""
    return (url or os.getenv("RECONCILER_URL") or DEFAULT_SERVICE_URL).rstrip("/")
