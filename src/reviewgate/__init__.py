"""reviewgate: AI-gated iterative code review orchestration."""

__version__ = "0.1.0"
