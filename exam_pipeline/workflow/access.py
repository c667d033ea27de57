from __future__ import annotations

from typing import Any, Iterable, Mapping, Protocol

from exam_pipeline.errors import AuthorizationError
from exam_pipeline.utils.logging_config import get_logger
from exam_pipeline.utils.types import Catalog

logger = get_logger(__name__)


class Authorizer(Protocol):
    async def authorize(self, principal: Any, catalog: Catalog) -> None:
        ...


class AllowAllAuthorizer:
    """Default for trusted callers such as workers and CLI runs."""

    async def authorize(self, principal: Any, catalog: Catalog) -> None:
        return None


class CreatorAuthorizer:
    """Only creators of a catalog's workspace may add questions to it."""

    def __init__(self, creators: Mapping[str, Iterable[str]]) -> None:
        self.creators = {str(catalog_id): {str(user) for user in users} for catalog_id, users in creators.items()}

    async def authorize(self, principal: Any, catalog: Catalog) -> None:
        if principal is None:
            raise AuthorizationError("Unauthorized")
        allowed = self.creators.get(str(catalog.catalog_id), set())
        if str(principal) not in allowed:
            logger.warning("Rejected batch | principal=%s catalog=%s", principal, catalog.catalog_id)
            raise AuthorizationError("Only creators can add questions")


__all__ = ["AllowAllAuthorizer", "Authorizer", "CreatorAuthorizer"]
