"""Next-status policy after an approved review.

The orchestrator treats this as a pure function of the feature: it asks a
``StatusResolver`` where an approved feature goes and validates the answer
against the state machine.
"""

from __future__ import annotations

from collections.abc import Callable

from reviewgate.config import PipelineConfig
from reviewgate.review.models import PIPELINE_STATUS_PREFIX, Feature, FeatureStatus

StatusResolver = Callable[[Feature], str]


class PipelineResolver:
    """Default resolver driven by the pipeline configuration.

    Policy:
        - With custom steps configured, an approved feature enters the first
          step as ``pipeline_<step id>``.
        - Otherwise, a feature that skipped tests waits for human approval
          when ``require_approval_when_tests_skipped`` is set.
        - Everything else is ``verified``.
    """

    def __init__(self, config: PipelineConfig | None = None) -> None:
        self.config = config or PipelineConfig()

    def __call__(self, feature: Feature) -> str:
        if self.config.steps:
            return f"{PIPELINE_STATUS_PREFIX}{self.config.steps[0].id}"
        if feature.skip_tests and self.config.require_approval_when_tests_skipped:
            return FeatureStatus.WAITING_APPROVAL.value
        return FeatureStatus.VERIFIED.value
