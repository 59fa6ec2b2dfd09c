"""Context assembly for review agents."""

from reviewgate.context.builder import ContextBuilder, group_findings, order_findings
from reviewgate.context.loader import TemplateLoader

__all__ = ["ContextBuilder", "TemplateLoader", "group_findings", "order_findings"]
