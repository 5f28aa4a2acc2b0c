"""Prompt templates for the suggestion engine.

Two parts:
1. SYSTEM_PROMPT - reviewer persona and the exact JSON contract
2. build_review_prompt - pull request context plus bounded file patches
"""

from ..constants import MAX_PATCH_CHARS, MAX_PROMPT_FILES, TRUNCATION_MARKER
from ..github.models import DiffBundle


SYSTEM_PROMPT = """You are an expert code reviewer with deep knowledge of software engineering best practices, security, performance, and maintainability.

Your task is to analyze pull request changes and provide constructive, actionable feedback.

IMPORTANT: You must respond with valid JSON in this exact format:
{
  "summary": {
    "totalIssues": number,
    "criticalIssues": number,
    "overallRating": "excellent|good|needs_improvement|poor",
    "mainConcerns": ["concern1", "concern2"]
  },
  "suggestions": [
    {
      "filePath": "path/to/file.py",
      "lineNumber": 42,
      "severity": "HIGH|MEDIUM|LOW",
      "category": "Security|Performance|Code Quality|Best Practices|Bug Risk|Maintainability",
      "message": "Brief description of the issue",
      "suggestion": "Detailed suggestion for improvement",
      "codeSnippet": "problematic code if applicable"
    }
  ]
}

Focus on:
- Security vulnerabilities
- Performance issues
- Code quality and maintainability
- Best practices violations
- Potential bugs
- Design patterns and architecture

Be constructive and specific. Provide actionable suggestions, not just criticism."""


def truncate_patch(patch: str, max_chars: int = MAX_PATCH_CHARS) -> str:
    if len(patch) <= max_chars:
        return patch
    return patch[:max_chars] + TRUNCATION_MARKER


def build_review_prompt(
    bundle: DiffBundle,
    max_files: int = MAX_PROMPT_FILES,
    max_patch_chars: int = MAX_PATCH_CHARS,
) -> str:
    """Build the user prompt for one pull request.

    Only the first ``max_files`` files are included, and each patch is cut
    at ``max_patch_chars`` characters.

    Args:
        bundle: Normalized diff of the pull request
        max_files: Number of files to include
        max_patch_chars: Per-file patch length before truncation
    """
    pr = bundle.summary
    sections = [
        "Please analyze this pull request:",
        "",
        "## Pull Request Context",
        f"- **Title**: {pr.title}",
        f"- **Description**: {pr.body or 'No description provided'}",
        f"- **Changes**: {pr.additions} additions, {pr.deletions} deletions "
        f"across {pr.changed_files} files",
        "",
        "## File Changes to Analyze:",
        "",
    ]

    for changed in bundle.files[:max_files]:
        sections.append(f"### File: {changed.filename}")
        sections.append(f"**Status**: {changed.status.value}")
        sections.append(f"**Changes**: +{changed.additions} -{changed.deletions}")
        sections.append("")
        if changed.patch:
            sections.append("**Code Changes**:")
            sections.append("```diff")
            sections.append(truncate_patch(changed.patch, max_patch_chars))
            sections.append("```")
            sections.append("")

    sections.append("""
## Analysis Instructions

Please analyze the above code changes and provide:

1. **Overall Assessment**: Rate the code quality and identify main concerns
2. **Specific Issues**: Find problems in the code with exact line references
3. **Improvement Suggestions**: Provide actionable recommendations

Focus on critical issues first, then important quality improvements.

Remember to respond with valid JSON only.""")

    return "\n".join(sections)
