"""Pipeline collaborators: source control and next-status policy."""

from reviewgate.pipeline.git_ops import CommitProvider, CommitResult, GitCommitProvider
from reviewgate.pipeline.resolver import PipelineResolver, StatusResolver

__all__ = [
    "CommitProvider",
    "CommitResult",
    "GitCommitProvider",
    "PipelineResolver",
    "StatusResolver",
]
