"""Suggestion engine adapter.

Turns a DiffBundle into a SuggestionReport through the configured LLM:

  1. Fingerprint the pull request content (md5 over number, title, files)
  2. Return the cached report for that fingerprint if present
  3. Build a bounded prompt (first 10 files, patches cut at 2000 chars)
  4. Call the LLM for a JSON report
  5. Decode strictly; drop suggestions that do not match the contract
  6. Recount the summary from surviving suggestions, cap main concerns
  7. Fall back to a single "Analysis Error" suggestion when unusable
  8. Cache the report for 24 hours under the fingerprint
"""

import hashlib
import json
import logging
from typing import Any, Dict, List, Optional

from llama_index.core import Settings
from llama_index.core.base.llms.types import ChatMessage, MessageRole
from pydantic import ValidationError as PydanticValidationError

from ..cache import ResilientCache, keys
from ..constants import MAX_PATCH_CHARS, MAX_PROMPT_FILES, REPORT_CACHE_TTL
from ..exceptions import SuggestionEngineError
from ..gateway import LLMGateway
from ..github.models import DiffBundle
from .models import RawReport, RawSuggestion, ReviewSuggestion, SuggestionReport
from . import prompts

logger = logging.getLogger(__name__)


class SuggestionEngine:
    """Generate review suggestions for a pull request diff.

    Args:
        cache: Shared ResilientCache for engine reports
        llm: LLM to call; falls back to ``Settings.llm`` when None
        max_files: Files included in the prompt
        max_patch_chars: Per-file patch length before truncation
    """

    def __init__(
        self,
        cache: ResilientCache,
        llm: Optional[Any] = None,
        max_files: int = MAX_PROMPT_FILES,
        max_patch_chars: int = MAX_PATCH_CHARS,
        report_ttl: int = REPORT_CACHE_TTL,
    ):
        self._cache = cache
        self._llm = llm
        self._max_files = max_files
        self._max_patch_chars = max_patch_chars
        self._report_ttl = report_ttl

    @property
    def llm(self) -> Any:
        return self._llm if self._llm is not None else Settings.llm

    # ── Public API ──────────────────────────────────────────────────────

    @staticmethod
    def fingerprint(bundle: DiffBundle) -> str:
        """Content hash of a pull request, independent of any analysis id."""
        content = json.dumps(
            {
                "prNumber": bundle.summary.number,
                "title": bundle.summary.title,
                "files": [
                    {"filename": f.filename, "status": f.status.value, "patch": f.patch}
                    for f in bundle.files
                ],
            },
            separators=(",", ":"),
        )
        return hashlib.md5(content.encode("utf-8")).hexdigest()

    def generate_suggestions(self, bundle: DiffBundle) -> SuggestionReport:
        """Return a validated report for the diff (cache first).

        Raises:
            SuggestionEngineError: No LLM is configured
        """
        cache_key = keys.report_key(self.fingerprint(bundle))
        cached = self._cache.get_json(cache_key)
        if cached is not None:
            try:
                report = SuggestionReport.model_validate(cached)
                logger.info(f"Using cached review report {cache_key}")
                return report
            except PydanticValidationError:
                logger.warning(f"Cached report {cache_key} no longer decodes, regenerating")

        llm = self.llm
        if llm is None:
            raise SuggestionEngineError("No LLM configured")

        prompt = prompts.build_review_prompt(bundle, self._max_files, self._max_patch_chars)
        messages = [
            ChatMessage(role=MessageRole.SYSTEM, content=prompts.SYSTEM_PROMPT),
            ChatMessage(role=MessageRole.USER, content=prompt),
        ]
        call_kwargs = {"gateway_purpose": "review"} if isinstance(llm, LLMGateway) else {}

        logger.info(
            f"Requesting review for PR #{bundle.summary.number} "
            f"({len(bundle.files)} files, prompt {len(prompt)} chars)"
        )
        try:
            response = llm.chat(messages, **call_kwargs)
            raw_output = (response.message.content or "").strip()
        except Exception as e:
            # Not cached: a provider outage should not pin the fallback for a day
            logger.error(f"Suggestion engine call failed: {e}")
            return SuggestionReport.fallback()

        report = self._build_report(self._parse_json_output(raw_output), raw_output)
        self._cache.set_json(cache_key, report.to_cache(), self._report_ttl)
        logger.info(
            f"Review completed: {report.summary.total_issues} suggestions "
            f"({report.summary.critical_issues} critical)"
        )
        return report

    def get_usage_stats(self) -> Dict[str, Any]:
        """Cached report count plus gateway call metrics when available."""
        stats: Dict[str, Any] = {
            "cachedAnalyses": len(self._cache.find_keys(keys.REPORT_PREFIX)),
        }
        llm = self.llm
        if isinstance(llm, LLMGateway):
            stats["llm"] = llm.get_metrics()
        return stats

    # ── Output Parsing ──────────────────────────────────────────────────

    def _parse_json_output(self, raw: str) -> Optional[Dict[str, Any]]:
        """Parse JSON from LLM output, stripping markdown fences."""
        cleaned = raw.strip()
        if "```" in cleaned:
            fenced = cleaned.split("```", 1)[1]
            # Drop the language tag of the opening fence, if any
            newline = fenced.find("\n")
            if newline >= 0 and not fenced[:newline].strip().startswith("{"):
                fenced = fenced[newline + 1:]
            cleaned = fenced.split("```", 1)[0].strip()

        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError as e:
            logger.warning(f"JSON parse failed: {e}. Attempting repair.")
            # Try to find the outermost { }
            start = raw.find("{")
            end = raw.rfind("}")
            if start < 0 or end <= start:
                return None
            try:
                parsed = json.loads(raw[start:end + 1])
            except json.JSONDecodeError:
                return None
        return parsed if isinstance(parsed, dict) else None

    def _build_report(self, parsed: Optional[Dict[str, Any]], raw: str) -> SuggestionReport:
        if parsed is None:
            logger.error(f"Unparseable review output: {raw[:500]}")
            return SuggestionReport.fallback()

        try:
            raw_report = RawReport.model_validate(parsed)
        except PydanticValidationError as e:
            logger.error(f"Review output does not match the report contract: {e}")
            return SuggestionReport.fallback()

        valid: List[ReviewSuggestion] = []
        for item in raw_report.suggestions:
            try:
                valid.append(ReviewSuggestion.from_raw(RawSuggestion.model_validate(item)))
            except (PydanticValidationError, ValueError, OverflowError):
                logger.debug(f"Dropping invalid suggestion: {str(item)[:200]}")

        dropped = len(raw_report.suggestions) - len(valid)
        if dropped:
            logger.warning(f"Dropped {dropped} invalid suggestions from review output")

        return SuggestionReport.from_suggestions(
            valid,
            overall_rating=raw_report.summary.overall_rating,
            main_concerns=raw_report.summary.main_concerns,
        )
