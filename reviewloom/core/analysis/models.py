"""Data contracts for the analysis subsystem.

Kept as dataclasses (not ORM models) for transport between the API layer
and the orchestrator.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Principal:
    """Authenticated caller: stable user id plus the delegated GitHub token."""
    user_id: str
    username: str
    github_token: str = field(repr=False)


class CreateOutcome(Enum):
    """How a create request was resolved."""
    CREATED = "created"                 # new PENDING record, pipeline scheduled
    EXISTING_COMPLETED = "completed"    # reused; no reprocessing
    IN_PROGRESS = "in_progress"         # a run is already pending or processing


@dataclass
class CreateAnalysisResult:
    outcome: CreateOutcome
    analysis: Dict[str, Any]

    @property
    def analysis_id(self) -> str:
        return self.analysis["id"]

    @property
    def status(self) -> str:
        return self.analysis["status"]

    @property
    def message(self) -> str:
        if self.outcome == CreateOutcome.EXISTING_COMPLETED:
            return "Analysis already completed for this pull request"
        if self.outcome == CreateOutcome.IN_PROGRESS:
            return "Analysis already in progress for this pull request"
        return "Analysis started"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "analysisId": self.analysis_id,
            "status": self.status,
            "prNumber": self.analysis.get("prNumber"),
            "repositoryId": self.analysis.get("repositoryId"),
            "createdAt": self.analysis.get("createdAt"),
        }
        if self.outcome == CreateOutcome.EXISTING_COMPLETED:
            data["completedAt"] = self.analysis.get("completedAt")
            data["suggestions"] = self.analysis.get("suggestions", [])
        return data


@dataclass
class PipelineResult:
    """Terminal outcome of one pipeline run (for logging and tests)."""
    analysis_id: str
    status: Optional[str]
    suggestion_count: int = 0
    error: Optional[str] = None
