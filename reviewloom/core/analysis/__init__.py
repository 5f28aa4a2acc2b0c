"""PR analysis: record store, state machine, background worker, read views."""

from .models import CreateAnalysisResult, CreateOutcome, PipelineResult, Principal
from .orchestrator import AnalysisOrchestrator
from .query import AnalysisQueryService
from .repositories import RepositoryService
from .store import AnalysisStore
from .worker import AnalysisWorker

__all__ = [
    "AnalysisOrchestrator",
    "AnalysisQueryService",
    "AnalysisStore",
    "AnalysisWorker",
    "CreateAnalysisResult",
    "CreateOutcome",
    "PipelineResult",
    "Principal",
    "RepositoryService",
]
