"""Suggestion engine: prompt construction, LLM call, report validation."""

from .engine import SuggestionEngine
from .models import ReportSummary, ReviewSuggestion, SuggestionReport

__all__ = [
    "SuggestionEngine",
    "ReportSummary",
    "ReviewSuggestion",
    "SuggestionReport",
]
