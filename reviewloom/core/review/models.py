"""Data contracts for the suggestion engine.

The engine's JSON is decoded through strict pydantic models: a report whose
summary does not match is rejected as a whole, while individual suggestions
that do not match are dropped. Surviving suggestions are trimmed and bounded
before they leave this module.
"""

import math
from typing import List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StrictStr,
    field_validator,
)

from ..constants import (
    ANALYSIS_ERROR_CATEGORY,
    ANALYSIS_ERROR_FILE_PATH,
    MAX_LINE_NUMBER,
    MAX_MAIN_CONCERNS,
    MAX_MESSAGE_LENGTH,
    MAX_SNIPPET_LENGTH,
    MAX_SUGGESTION_LENGTH,
    SEVERITY_HIGH,
    SEVERITY_MEDIUM,
)

Severity = Literal["HIGH", "MEDIUM", "LOW"]
OverallRating = Literal["excellent", "good", "needs_improvement", "poor"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ── Raw engine output ───────────────────────────────────────────────────

class RawSummary(_CamelModel):
    """Summary block as the engine reports it (counts are not trusted)."""
    total_issues: Union[StrictInt, StrictFloat] = Field(..., alias="totalIssues")
    critical_issues: Union[StrictInt, StrictFloat] = Field(..., alias="criticalIssues")
    overall_rating: OverallRating = Field(..., alias="overallRating")
    main_concerns: List[StrictStr] = Field(..., alias="mainConcerns")


class RawSuggestion(_CamelModel):
    """One finding as the engine reports it."""
    file_path: StrictStr = Field(..., alias="filePath")
    line_number: Union[StrictInt, StrictFloat] = Field(..., alias="lineNumber")
    severity: Severity
    category: StrictStr
    message: StrictStr
    suggestion: StrictStr
    code_snippet: Optional[StrictStr] = Field(None, alias="codeSnippet")

    @field_validator("category", "message", "suggestion")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("line_number")
    @classmethod
    def _storable_line(cls, value: Union[int, float]) -> Union[int, float]:
        if abs(value) > MAX_LINE_NUMBER or not math.isfinite(value):
            raise ValueError("line number out of range")
        return value


class RawReport(_CamelModel):
    summary: RawSummary
    suggestions: list


# ── Cleaned report ──────────────────────────────────────────────────────

class ReviewSuggestion(_CamelModel):
    """A bounded, trimmed finding ready to be persisted."""
    file_path: str = Field(..., alias="filePath")
    line_number: int = Field(1, ge=1, alias="lineNumber")
    severity: Severity
    category: str
    message: str = Field(..., max_length=MAX_MESSAGE_LENGTH)
    suggestion: str = Field(..., max_length=MAX_SUGGESTION_LENGTH)
    code_snippet: Optional[str] = Field(None, max_length=MAX_SNIPPET_LENGTH, alias="codeSnippet")

    @classmethod
    def from_raw(cls, raw: RawSuggestion) -> "ReviewSuggestion":
        snippet = raw.code_snippet.strip()[:MAX_SNIPPET_LENGTH] if raw.code_snippet else None
        return cls(
            file_path=raw.file_path.strip(),
            line_number=max(1, int(raw.line_number)),
            severity=raw.severity,
            category=raw.category.strip(),
            message=raw.message.strip()[:MAX_MESSAGE_LENGTH],
            suggestion=raw.suggestion.strip()[:MAX_SUGGESTION_LENGTH],
            code_snippet=snippet or None,
        )


class ReportSummary(_CamelModel):
    total_issues: int = Field(..., ge=0, alias="totalIssues")
    critical_issues: int = Field(..., ge=0, alias="criticalIssues")
    overall_rating: OverallRating = Field(..., alias="overallRating")
    main_concerns: List[str] = Field(default_factory=list, alias="mainConcerns")


class SuggestionReport(_CamelModel):
    """Summary plus suggestions, as cached and handed to the orchestrator."""
    summary: ReportSummary
    suggestions: List[ReviewSuggestion] = Field(default_factory=list)
    is_fallback: bool = Field(False, alias="isFallback")

    @classmethod
    def from_suggestions(
        cls,
        suggestions: List[ReviewSuggestion],
        overall_rating: str,
        main_concerns: List[str],
    ) -> "SuggestionReport":
        """Build a report whose counts are derived from the suggestions."""
        return cls(
            summary=ReportSummary(
                total_issues=len(suggestions),
                critical_issues=sum(1 for s in suggestions if s.severity == SEVERITY_HIGH),
                overall_rating=overall_rating,
                main_concerns=list(main_concerns)[:MAX_MAIN_CONCERNS],
            ),
            suggestions=suggestions,
        )

    @classmethod
    def fallback(cls) -> "SuggestionReport":
        """Degenerate report used when the engine output is unusable."""
        return cls(
            summary=ReportSummary(
                total_issues=1,
                critical_issues=0,
                overall_rating="needs_improvement",
                main_concerns=["Analysis failed - please try again"],
            ),
            suggestions=[
                ReviewSuggestion(
                    file_path=ANALYSIS_ERROR_FILE_PATH,
                    line_number=1,
                    severity=SEVERITY_MEDIUM,
                    category=ANALYSIS_ERROR_CATEGORY,
                    message="Failed to analyze code properly",
                    suggestion="The AI analysis encountered an error. Please try analyzing this PR again.",
                    code_snippet=None,
                )
            ],
            is_fallback=True,
        )

    def to_cache(self) -> dict:
        return self.model_dump(by_alias=True)
