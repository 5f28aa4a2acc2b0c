"""Analysis and repository request schemas."""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...core.constants import (
    DEFAULT_PAGE_LIMIT,
    DEFAULT_SUGGESTION_PAGE_LIMIT,
    ID_PATTERN,
    MAX_PAGE,
    MAX_PAGE_LIMIT,
    MAX_PR_NUMBER,
    MIN_PR_NUMBER,
)

AnalysisStatus = Literal["PENDING", "PROCESSING", "COMPLETED", "FAILED"]


class CreateAnalysisRequest(BaseModel):
    """Create analysis request."""
    pr_number: int = Field(
        ...,
        alias="prNumber",
        ge=MIN_PR_NUMBER,
        le=MAX_PR_NUMBER,
        description="Pull request number",
    )


class ConnectRepositoryRequest(BaseModel):
    """Connect repository request."""
    full_name: str = Field(
        ...,
        alias="fullName",
        pattern=r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$",
        description="Repository in owner/name form",
    )


class _StrictQuery(BaseModel):
    """Query strings are parsed leniently but unknown parameters are rejected."""
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class PageQuery(_StrictQuery):
    page: int = Field(1, ge=1, le=MAX_PAGE)
    limit: int = Field(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT)


class ListAnalysesQuery(PageQuery):
    status: Optional[AnalysisStatus] = None
    repository_id: Optional[str] = Field(None, alias="repositoryId", pattern=ID_PATTERN)
    sort_by: Literal["createdAt", "completedAt", "status", "prNumber"] = Field(
        "createdAt", alias="sortBy"
    )
    sort_order: Literal["asc", "desc"] = Field("desc", alias="sortOrder")


class SuggestionsQuery(_StrictQuery):
    severity: Optional[Literal["HIGH", "MEDIUM", "LOW"]] = None
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    page: int = Field(1, ge=1, le=MAX_PAGE)
    limit: int = Field(DEFAULT_SUGGESTION_PAGE_LIMIT, ge=1)

    @field_validator("severity", mode="before")
    @classmethod
    def _upper(cls, value):
        return value.upper() if isinstance(value, str) else value

    @field_validator("limit")
    @classmethod
    def _cap_limit(cls, value: int) -> int:
        return min(value, MAX_PAGE_LIMIT)


class ExportQuery(_StrictQuery):
    format: Literal["json", "csv"] = "json"
