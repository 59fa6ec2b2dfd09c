"""Context assembly for review and fix invocations.

The builder is a pure transformation over a Feature snapshot: it never reads
the store or calls out, so every context can be reproduced from the persisted
history alone.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import structlog

from reviewgate.context.loader import TemplateLoader
from reviewgate.review.models import (
    SEVERITY_ORDER,
    Feature,
    Finding,
    FindingSeverity,
    Iteration,
)

logger = structlog.get_logger(__name__)

REVIEW_TEMPLATE = "review.j2"
FIX_TEMPLATE = "fix.j2"
DETAIL_TEMPLATE = "detail.j2"


def order_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Sort findings errors first, then warnings, then info.

    The sort is stable, so findings of equal severity keep the order the
    reviewer reported them in.
    """
    return sorted(findings, key=lambda f: SEVERITY_ORDER[f.severity])


def group_findings(
    findings: Iterable[Finding],
) -> list[tuple[FindingSeverity, list[Finding]]]:
    """Group findings by severity, most severe group first.

    Empty groups are omitted.
    """
    groups: dict[FindingSeverity, list[Finding]] = {}
    for finding in order_findings(findings):
        groups.setdefault(finding.severity, []).append(finding)
    return list(groups.items())


def _quote(text: str, limit: int) -> str:
    if len(text) > limit:
        text = text[:limit].rstrip() + "\n[... output truncated ...]"
    return "\n".join(f"> {line}" if line else ">" for line in text.splitlines())


class ContextBuilder:
    """Renders agent contexts and iteration detail documents.

    Attributes:
        loader: Template loader providing the Jinja2 environment.
        output_excerpt_chars: Maximum characters of the previous
            implementation output quoted in a fix context.
    """

    def __init__(
        self,
        loader: TemplateLoader | None = None,
        output_excerpt_chars: int = 4000,
    ) -> None:
        self.loader = loader or TemplateLoader()
        self.output_excerpt_chars = output_excerpt_chars

    def build_review_context(
        self,
        feature: Feature,
        diff: str,
        commit_sha: str = "",
        max_iterations: int | None = None,
    ) -> str:
        """Build the reviewer's context for the next iteration.

        Includes the feature title and description, the full diff and, when
        the feature has been reviewed before, every prior iteration's summary
        and findings verbatim, oldest first.

        Args:
            feature: Snapshot of the feature under review.
            diff: Full diff of the commit under review.
            commit_sha: Identifier of the commit under review.
            max_iterations: Cap to display when the feature has no spec yet.

        Returns:
            The rendered review context.
        """
        spec = feature.review
        prior: Sequence[Iteration] = spec.iterations if spec is not None else ()
        cap = spec.max_iterations if spec is not None else max_iterations

        template = self.loader.load_template(REVIEW_TEMPLATE)
        context = template.render(
            feature=feature,
            diff=diff,
            commit_sha=commit_sha or "(unknown)",
            iteration_number=len(prior) + 1,
            max_iterations=cap if cap is not None else "?",
            prior_iterations=prior,
        )

        logger.debug(
            "review_context_built",
            feature_id=feature.id,
            prior_iterations=len(prior),
            context_chars=len(context),
        )
        return context

    def build_fix_context(self, feature: Feature) -> str:
        """Build the implementer's context after a rejected or failed review.

        Includes the latest iteration's findings grouped by severity, its
        rejection rationale, a reference to the previous attempt and the
        findings of all earlier iterations.

        Raises:
            ValueError: If the feature has no recorded iteration.
        """
        spec = feature.review
        if spec is None or spec.latest is None:
            raise ValueError(f"Feature {feature.id} has no review iteration to fix")

        latest = spec.latest
        rationale = latest.rejection_reason or latest.summary or "(no rationale given)"
        output = None
        if feature.implementation_output:
            output = _quote(feature.implementation_output, self.output_excerpt_chars)

        template = self.loader.load_template(FIX_TEMPLATE)
        context = template.render(
            feature=feature,
            latest=latest,
            next_iteration=spec.current_iteration + 1,
            max_iterations=spec.max_iterations,
            grouped_findings=group_findings(latest.findings),
            rationale=rationale,
            implementation_output=output,
            earlier_iterations=spec.iterations[:-1],
        )

        logger.debug(
            "fix_context_built",
            feature_id=feature.id,
            latest_iteration=latest.iteration_number,
            findings=len(latest.findings),
            context_chars=len(context),
        )
        return context

    def render_detail_document(self, feature: Feature, iteration: Iteration) -> str:
        """Render the long-form Markdown record of one iteration."""
        template = self.loader.load_template(DETAIL_TEMPLATE)
        return template.render(
            feature=feature,
            iteration=iteration,
            findings=iteration.findings,
        )
