"""Parsing of reviewer responses into structured decisions.

The reviewer is asked to answer with a JSON object:

    {
      "decision": "approved" | "rejected",
      "summary": "...",
      "rationale": "...",
      "findings": [
        {"category": "code", "severity": "error", "title": "...",
         "description": "...", "suggestion": "...", "file": "src/x.py", "line": 12}
      ]
    }

The JSON may be wrapped in a Markdown code block or surrounded by prose.
Common synonyms for decisions, severities and categories are normalized;
anything that still cannot be turned into a decision raises
UnparsableResponseError.
"""

from __future__ import annotations

import json
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from reviewgate.review.errors import UnparsableResponseError
from reviewgate.review.models import Finding, FindingCategory, FindingSeverity, ReviewDecision

_DECISION_ALIASES: dict[str, ReviewDecision] = {
    "approved": ReviewDecision.APPROVED,
    "approve": ReviewDecision.APPROVED,
    "accept": ReviewDecision.APPROVED,
    "accepted": ReviewDecision.APPROVED,
    "pass": ReviewDecision.APPROVED,
    "passed": ReviewDecision.APPROVED,
    "lgtm": ReviewDecision.APPROVED,
    "rejected": ReviewDecision.REJECTED,
    "reject": ReviewDecision.REJECTED,
    "changes_requested": ReviewDecision.REJECTED,
    "request_changes": ReviewDecision.REJECTED,
    "fail": ReviewDecision.REJECTED,
    "failed": ReviewDecision.REJECTED,
}

_SEVERITY_ALIASES: dict[str, FindingSeverity] = {
    "error": FindingSeverity.ERROR,
    "critical": FindingSeverity.ERROR,
    "high": FindingSeverity.ERROR,
    "blocker": FindingSeverity.ERROR,
    "major": FindingSeverity.ERROR,
    "warning": FindingSeverity.WARNING,
    "warn": FindingSeverity.WARNING,
    "medium": FindingSeverity.WARNING,
    "minor": FindingSeverity.WARNING,
    "info": FindingSeverity.INFO,
    "low": FindingSeverity.INFO,
    "nitpick": FindingSeverity.INFO,
    "note": FindingSeverity.INFO,
    "suggestion": FindingSeverity.INFO,
}

_CATEGORY_ALIASES: dict[str, FindingCategory] = {
    "compliance": FindingCategory.COMPLIANCE,
    "spec": FindingCategory.COMPLIANCE,
    "spec_compliance": FindingCategory.COMPLIANCE,
    "requirements": FindingCategory.COMPLIANCE,
    "code": FindingCategory.CODE,
    "quality": FindingCategory.CODE,
    "bug": FindingCategory.CODE,
    "security": FindingCategory.CODE,
    "style": FindingCategory.CODE,
    "test": FindingCategory.TEST,
    "tests": FindingCategory.TEST,
    "testing": FindingCategory.TEST,
    "architecture": FindingCategory.ARCHITECTURE,
    "design": FindingCategory.ARCHITECTURE,
    "performance": FindingCategory.PERFORMANCE,
    "perf": FindingCategory.PERFORMANCE,
}


def _normalize_key(value: str) -> str:
    return value.strip().lower().replace("-", "_").replace(" ", "_")


class _RawFinding(BaseModel):
    """Lenient shape of one finding as reviewers tend to write it."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    category: str = "code"
    severity: str = "warning"
    title: str = Field(..., min_length=1)
    description: str = ""
    suggestion: str | None = Field(default=None, alias="fix")
    file_path: str | None = Field(default=None, alias="file")
    line_number: int | None = Field(default=None, alias="line")

    @field_validator("line_number", mode="before")
    @classmethod
    def coerce_line(cls, v: Any) -> int | None:
        if v in (None, "", 0):
            return None
        return int(v)

    def to_finding(self) -> Finding:
        severity = _SEVERITY_ALIASES.get(_normalize_key(self.severity))
        if severity is None:
            raise ValueError(f"Unknown severity: {self.severity}")
        category = _CATEGORY_ALIASES.get(_normalize_key(self.category), FindingCategory.CODE)
        return Finding(
            category=category,
            severity=severity,
            title=self.title.strip(),
            description=self.description.strip() or self.title.strip(),
            suggestion=self.suggestion,
            file_path=self.file_path,
            line_number=self.line_number,
        )


class ReviewVerdict(BaseModel):
    """Structured result of a parsed review.

    Attributes:
        decision: approved or rejected.
        findings: Findings in the order the reviewer listed them.
        summary: Short summary of the review.
        rationale: Why the work was rejected; None for approvals.
    """

    model_config = ConfigDict(frozen=True)

    decision: ReviewDecision
    findings: tuple[Finding, ...] = ()
    summary: str = ""
    rationale: str | None = None


def parse_review_decision(raw_response: str) -> ReviewVerdict:
    """Parse a reviewer's free-text response into a ReviewVerdict.

    Args:
        raw_response: Raw text returned by the reviewing agent.

    Returns:
        The structured verdict.

    Raises:
        UnparsableResponseError: If no JSON object can be extracted, the JSON
            is invalid, the decision is missing or unknown, or a finding is
            malformed.
    """
    if not raw_response or not raw_response.strip():
        raise UnparsableResponseError("Empty review response", raw_response or "")

    json_str = extract_json(raw_response)
    if json_str is None:
        raise UnparsableResponseError("No JSON object found in review response", raw_response)

    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise UnparsableResponseError(
            f"Invalid JSON in review response: {e}", raw_response
        ) from e

    if not isinstance(data, dict):
        raise UnparsableResponseError("Review response JSON is not an object", raw_response)

    raw_decision = data.get("decision", data.get("verdict", data.get("status")))
    if not isinstance(raw_decision, str):
        raise UnparsableResponseError("Review response has no decision", raw_response)
    decision = _DECISION_ALIASES.get(_normalize_key(raw_decision))
    if decision is None:
        raise UnparsableResponseError(f"Unknown review decision: {raw_decision}", raw_response)

    raw_findings = data.get("findings", data.get("issues", [])) or []
    if not isinstance(raw_findings, list):
        raise UnparsableResponseError("Review findings must be a list", raw_response)

    try:
        findings = tuple(_RawFinding.model_validate(f).to_finding() for f in raw_findings)
    except (ValidationError, ValueError, TypeError) as e:
        raise UnparsableResponseError(f"Malformed finding: {e}", raw_response) from e

    summary = str(data.get("summary") or "").strip()
    rationale = data.get("rationale", data.get("rejection_reason"))
    rationale = str(rationale).strip() if rationale else None
    if decision is ReviewDecision.REJECTED and not rationale:
        rationale = summary or None
    if decision is ReviewDecision.APPROVED:
        rationale = None

    return ReviewVerdict(
        decision=decision,
        findings=findings,
        summary=summary,
        rationale=rationale,
    )


def extract_json(text: str) -> str | None:
    """Extract a JSON object from text that may contain markdown or prose.

    Strategies, in order:
    1. A fenced code block tagged ``json``
    2. Any fenced code block whose body looks like an object
    3. The first balanced ``{...}`` span, honouring string literals

    Args:
        text: Text that may contain JSON

    Returns:
        Extracted JSON string or None if not found
    """
    markdown_match = re.search(r"```json\s*\n(.*?)\n\s*```", text, re.DOTALL | re.IGNORECASE)
    if markdown_match:
        return markdown_match.group(1).strip()

    code_block_match = re.search(r"```\s*\n(.*?)\n\s*```", text, re.DOTALL)
    if code_block_match:
        potential_json = code_block_match.group(1).strip()
        if potential_json.startswith("{") and potential_json.endswith("}"):
            return potential_json

    first_brace = text.find("{")
    if first_brace == -1:
        return None

    brace_count = 0
    in_string = False
    escape_next = False

    for i in range(first_brace, len(text)):
        char = text[i]

        if escape_next:
            escape_next = False
            continue

        if char == "\\":
            escape_next = True
            continue

        if char == '"':
            in_string = not in_string
            continue

        if not in_string:
            if char == "{":
                brace_count += 1
            elif char == "}":
                brace_count -= 1
                if brace_count == 0:
                    return text[first_brace : i + 1]

    return None
