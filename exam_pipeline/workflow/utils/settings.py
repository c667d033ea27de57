from __future__ import annotations

import os
from types import SimpleNamespace
from typing import Any, Dict

_ALIASES = {
    "retries": "max_attempts",
    "max_retries": "max_attempts",
    "db_path": "db_url",
    "timeout": "batch_timeout_seconds",
    "backoff": "retry_backoff_seconds",
    "contract": "date_contract",
    "on_duplicate": "duplicate_policy",
    "jobid": "job_id",
}


def _optional_float(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    return float(value)


def normalize_settings(settings: Dict[str, Any] | None) -> Dict[str, Any]:
    """Map alias keys onto their canonical names; an explicit canonical key wins."""
    if settings is None:
        return {}
    normalized = dict(settings)
    for alias, canonical in _ALIASES.items():
        if alias in normalized:
            value = normalized.pop(alias)
            if normalized.get(canonical) is None:
                normalized[canonical] = value
    return normalized


def default_settings(*, override: Dict[str, Any] | None = None) -> SimpleNamespace:
    settings = SimpleNamespace(
        db_url=os.getenv("DB_URL", "data/exam_pipeline.db"),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        max_attempts=int(os.getenv("EXTRACTION_MAX_ATTEMPTS", 3)),
        retry_backoff_seconds=float(os.getenv("EXTRACTION_RETRY_BACKOFF", 1.0)),
        date_contract=os.getenv("EXTRACTION_DATE_CONTRACT", "content"),
        duplicate_policy=os.getenv("DUPLICATE_POLICY", "store_both"),
        batch_timeout_seconds=_optional_float(os.getenv("BATCH_TIMEOUT_SECONDS")),
        progress_redis_url=os.getenv("PROGRESS_REDIS_URL", "redis://localhost:6379/2"),
        ocr_dpi=int(os.getenv("OCR_DPI", 300)),
        ocr_lang=os.getenv("OCR_LANG", "eng"),
        job_id=None,
    )
    for key, value in normalize_settings(override).items():
        setattr(settings, key, value)
    return settings


__all__ = ["default_settings", "normalize_settings"]
