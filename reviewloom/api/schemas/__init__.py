"""Pydantic schemas for API request models."""

from .analysis import (
    ConnectRepositoryRequest,
    CreateAnalysisRequest,
    ExportQuery,
    ListAnalysesQuery,
    PageQuery,
    SuggestionsQuery,
)

__all__ = [
    'ConnectRepositoryRequest',
    'CreateAnalysisRequest',
    'ExportQuery',
    'ListAnalysesQuery',
    'PageQuery',
    'SuggestionsQuery',
]
