from __future__ import annotations

import json
import uuid
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List

from pydantic import BaseModel, Field, model_validator

from exam_pipeline.utils.types import Catalog, DuplicatePolicy, ExamDocument, PaperType
from exam_pipeline.workflow.utils.settings import default_settings


class PaperTypeModel(BaseModel):
    name: str = Field(..., description="Canonical paper type name, e.g. 'Paper 2: Mechanics'")
    topics: List[str] = Field(default_factory=list, description="Ordered canonical topics for this paper type")


class CatalogModel(BaseModel):
    catalog_id: str | None = Field(None, description="Workspace/catalog identifier the questions belong to")
    paper_types: List[PaperTypeModel] = Field(default_factory=list, description="Ordered paper types; order decides match precedence")

    def to_catalog(self) -> Catalog:
        return Catalog(
            paper_types=tuple(PaperType(name=item.name, topics=tuple(item.topics)) for item in self.paper_types),
            catalog_id=self.catalog_id,
        )


class DocumentRef(BaseModel):
    name: str | None = Field(None, description="Display name; defaults to the file name")
    file_path: str | None = Field(None, description="Path to the uploaded document accessible to workers")
    text: str | None = Field(None, description="Pre-extracted document text; skips OCR")

    @model_validator(mode="after")
    def _require_source(self) -> "DocumentRef":
        if not self.file_path and self.text is None:
            raise ValueError("either file_path or text is required")
        if not self.name and not self.file_path:
            raise ValueError("name is required when only text is given")
        return self

    def to_document(self) -> ExamDocument:
        path = Path(self.file_path) if self.file_path else None
        return ExamDocument(name=self.name or path.name, path=path, text=self.text)  # type: ignore[union-attr]


class BatchRequest(BaseModel):
    job_id: str | None = Field(None, description="optional job id; derived deterministically if omitted")
    principal: str | None = Field(None, description="User submitting the batch; checked against catalog creators")
    catalog: CatalogModel | None = Field(None, description="Inline catalog for this batch")
    catalog_id: str | None = Field(None, description="Id of a stored catalog, used when no inline catalog is given")
    papers: List[DocumentRef] = Field(default_factory=list, description="Exam paper documents")
    markschemes: List[DocumentRef] = Field(default_factory=list, description="Markscheme documents")
    timeout_seconds: float | None = Field(None, description="Caller-level timeout for the whole batch")
    duplicate_policy: DuplicatePolicy | None = Field(None, description="store_both | reject | overwrite")
    date_contract: str | None = Field(None, description="content | filename")
    max_attempts: int | None = Field(None, description="Extraction attempts per document")
    run_async: bool = Field(default=False, description="Queue the batch on Celery instead of running inline")

    @model_validator(mode="after")
    def _require_catalog(self) -> "BatchRequest":
        if self.catalog is None and not self.catalog_id:
            raise ValueError("either catalog or catalog_id is required")
        return self

    @property
    def resolved_catalog_id(self) -> str | None:
        if self.catalog is not None and self.catalog.catalog_id:
            return self.catalog.catalog_id
        return self.catalog_id

    def settings_override(self) -> Dict[str, Any]:
        override: Dict[str, Any] = {}
        if self.duplicate_policy is not None:
            override["duplicate_policy"] = self.duplicate_policy.value
        if self.date_contract:
            override["date_contract"] = self.date_contract
        if self.max_attempts is not None:
            override["max_attempts"] = self.max_attempts
        if self.timeout_seconds is not None:
            override["batch_timeout_seconds"] = self.timeout_seconds
        return override


def derive_job_id(request: BatchRequest) -> str:
    """Deterministic job id from the documents and catalog of a request."""
    if request.job_id:
        return request.job_id
    seed_data = {
        "catalog_id": request.resolved_catalog_id,
        "papers": sorted(doc.file_path or doc.name or "" for doc in request.papers),
        "markschemes": sorted(doc.file_path or doc.name or "" for doc in request.markschemes),
        "principal": request.principal,
    }
    payload = json.dumps(seed_data, sort_keys=True, separators=(",", ":"))
    return str(uuid.uuid5(uuid.NAMESPACE_URL, payload))


def batch_settings(request: BatchRequest, base: SimpleNamespace | None = None) -> SimpleNamespace:
    settings = SimpleNamespace(**vars(base)) if base is not None else default_settings()
    for key, value in request.settings_override().items():
        setattr(settings, key, value)
    settings.job_id = derive_job_id(request)
    return settings


__all__ = ["BatchRequest", "CatalogModel", "DocumentRef", "PaperTypeModel", "batch_settings", "derive_job_id"]
