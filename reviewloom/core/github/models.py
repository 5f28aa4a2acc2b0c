"""Data contracts for the diff source.

Strict pydantic decoders for what ReviewLoom consumes from GitHub. Unknown
fields are ignored; missing or mistyped required fields fail validation and
surface as a fetch failure instead of flowing through as loose dicts.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ChangeStatus(str, Enum):
    """Normalized per-file change status."""
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


# GitHub reports a few more statuses than we distinguish
_STATUS_ALIASES = {
    "removed": ChangeStatus.DELETED.value,
    "changed": ChangeStatus.MODIFIED.value,
    "copied": ChangeStatus.ADDED.value,
    "unchanged": ChangeStatus.MODIFIED.value,
}


class ChangedFile(BaseModel):
    """One file of a pull request. patch is absent for binary files."""
    model_config = ConfigDict(extra="ignore")

    filename: str
    status: ChangeStatus
    additions: int = Field(0, ge=0)
    deletions: int = Field(0, ge=0)
    patch: Optional[str] = None
    blob_url: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.lower()
            return _STATUS_ALIASES.get(lowered, lowered)
        return value

    @property
    def changed_lines(self) -> int:
        return self.additions + self.deletions


class ChangeSetSummary(BaseModel):
    """Pull request metadata."""
    model_config = ConfigDict(extra="ignore")

    number: int = Field(..., ge=1)
    title: str
    body: Optional[str] = None
    state: str = "open"
    head_sha: Optional[str] = None
    commits: int = 0
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0


class DiffBundle(BaseModel):
    """Normalized representation of a pull request's files and metadata."""
    model_config = ConfigDict(extra="ignore")

    summary: ChangeSetSummary
    files: List[ChangedFile] = Field(default_factory=list)

    @property
    def total_changed_lines(self) -> int:
        return sum(f.changed_lines for f in self.files)


class RepositoryInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    full_name: str
    private: bool = False
    default_branch: Optional[str] = None
    permissions: Dict[str, bool] = Field(default_factory=dict)


class AccessResult(BaseModel):
    """Outcome of a repository access check."""
    has_access: bool
    repo: Optional[RepositoryInfo] = None
    error: Optional[str] = None
