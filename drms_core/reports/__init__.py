# =============================================================================
# drms_core/reports/__init__.py
# Report Templates and Data Aggregation
# =============================================================================

from .data_aggregator import DataAggregator, DataSourceType, AggregationFunction, ReportQuery
from .template_engine import (
    ReportTemplateEngine,
    LayoutElement,
    DEFAULT_TEMPLATES,
    validate_template,
    positions_overlap,
)

__all__ = [
    "DataAggregator",
    "DataSourceType",
    "AggregationFunction",
    "ReportQuery",
    "ReportTemplateEngine",
    "LayoutElement",
    "DEFAULT_TEMPLATES",
    "validate_template",
    "positions_overlap",
]
