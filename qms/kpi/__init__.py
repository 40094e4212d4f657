"""Plant KPI metrics module."""

from .metrics import MetricCategory, MetricResult, PlantKpiMetrics, resolve_date_range

__all__ = ["MetricCategory", "MetricResult", "PlantKpiMetrics", "resolve_date_range"]
