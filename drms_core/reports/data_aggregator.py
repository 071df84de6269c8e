# =============================================================================
# drms_core/reports/data_aggregator.py
# Report Data Queries and Aggregations (pandas)
# =============================================================================
"""
DataAggregator - loads a data source into a DataFrame, filters it and
applies grouped aggregations for report elements.

Features:
- Data sources: assessments, responses, entities, donors,
  donor_commitments, incidents
- Filter operators: eq, ne, gt, gte, lt, lte, in, nin, contains,
  startsWith, endsWith, plus a date range on any date column
- Aggregations: sum, count, average, min, max, percentage, distinct_count
  with groupBy, alias and output format
"""

from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from drms_core.data.database import Database
from drms_core.errors import ValidationError
from drms_core.models.records import parse_timestamp
from drms_core.logging import get_logger

logger = get_logger(__name__)


class DataSourceType(str, Enum):
    ASSESSMENTS = "assessments"
    RESPONSES = "responses"
    ENTITIES = "entities"
    DONORS = "donors"
    COMMITMENTS = "donor_commitments"
    INCIDENTS = "incidents"


class AggregationFunction(str, Enum):
    SUM = "sum"
    COUNT = "count"
    AVERAGE = "average"
    MIN = "min"
    MAX = "max"
    PERCENTAGE = "percentage"
    DISTINCT_COUNT = "distinct_count"


SOURCE_TABLES = {
    DataSourceType.ASSESSMENTS: "rapid_assessments",
    DataSourceType.RESPONSES: "rapid_responses",
    DataSourceType.ENTITIES: "entities",
    DataSourceType.DONORS: "donors",
    DataSourceType.COMMITMENTS: "donor_commitments",
    DataSourceType.INCIDENTS: "incidents",
}

# Sources that carry entity_id get the entity name/type joined in
_ENTITY_JOINED = (DataSourceType.ASSESSMENTS, DataSourceType.RESPONSES, DataSourceType.COMMITMENTS)

FIELD_DESCRIPTIONS = {
    "rapid_assessment_type": "Type of assessment conducted",
    "rapid_assessment_date": "Date when assessment was performed",
    "status": "Current status of the record",
    "priority": "Priority level assigned",
    "delivered_quantity": "Total quantity delivered",
    "total_committed_quantity": "Total quantity pledged",
}


# =============================================================================
# QUERY SCHEMAS
# =============================================================================

class FilterConfig(BaseModel):
    field: str
    operator: str = Field(pattern="^(eq|ne|gt|gte|lt|lte|in|nin|contains|startsWith|endsWith)$")
    value: Any = None


class DateRange(BaseModel):
    field: str = "created_at"
    startDate: str
    endDate: str


class AggregationConfig(BaseModel):
    id: str
    field: str
    function: AggregationFunction
    groupBy: Optional[List[str]] = None
    alias: Optional[str] = None
    format: Optional[str] = Field(default=None, pattern="^(number|percentage|currency|date)$")


class OrderBy(BaseModel):
    field: str
    direction: str = Field(default="desc", pattern="^(asc|desc)$")


class ReportQuery(BaseModel):
    dateRange: Optional[DateRange] = None
    filters: List[FilterConfig] = Field(default_factory=list)
    aggregations: List[AggregationConfig] = Field(default_factory=list)
    search: Optional[str] = None
    orderBy: Optional[OrderBy] = None
    limit: int = Field(default=1000, gt=0, le=10000)


def parse_query(raw: Optional[Dict[str, Any]]) -> ReportQuery:
    try:
        return ReportQuery.model_validate(raw or {})
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid report query",
            field="filters",
            errors=[f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()],
        ) from e


# =============================================================================
# AGGREGATOR
# =============================================================================

class DataAggregator:
    """
    Usage:
        aggregator = DataAggregator(db)
        result = aggregator.execute_query("assessments", {
            "aggregations": [{"id": "a", "field": "id", "function": "count",
                              "groupBy": ["rapid_assessment_type"]}],
        })
    """

    def __init__(self, db: Database):
        self.db = db

    def load(self, source: str) -> pd.DataFrame:
        source = self._source(source)
        df = self.db.to_dataframe(SOURCE_TABLES[source])
        if source in _ENTITY_JOINED and not df.empty:
            entities = self.db.to_dataframe("entities")[["id", "name", "type"]].rename(
                columns={"id": "entity_id", "name": "entity_name", "type": "entity_type"}
            )
            df = df.merge(entities, on="entity_id", how="left")
        return df

    def execute_query(
        self,
        source: str,
        query: Optional[Dict[str, Any]] = None,
        include_count: bool = False,
        include_aggregations: bool = True,
    ) -> Dict[str, Any]:
        spec = parse_query(query)
        df = self.filter_frame(self.load(source), spec)
        total = len(df)
        logger.debug(f"Report query on {source}: {total} matching rows")

        if spec.orderBy and spec.orderBy.field in df.columns:
            df = df.sort_values(spec.orderBy.field, ascending=spec.orderBy.direction == "asc")
        df = df.head(spec.limit)

        if include_aggregations and spec.aggregations:
            data = self.aggregate(df, spec.aggregations)
        else:
            data = _records(df)

        return {
            "data": data,
            "totalCount": total if include_count else None,
            "metadata": {"dataSource": source, "query": spec.model_dump()},
        }

    def get_data_preview(self, source: str, query: Optional[Dict[str, Any]] = None, limit: int = 10) -> List[Dict[str, Any]]:
        raw = dict(query or {})
        raw["limit"] = limit
        return self.execute_query(source, raw, include_aggregations=False)["data"]

    # =========================================================================
    # FILTERING
    # =========================================================================

    def filter_frame(self, df: pd.DataFrame, spec: ReportQuery) -> pd.DataFrame:
        if df.empty:
            return df

        mask = pd.Series(True, index=df.index)
        if spec.dateRange:
            column = spec.dateRange.field
            if column not in df.columns:
                raise ValidationError(f"Unknown date field: {column}", field="dateRange")
            dates = pd.to_datetime(df[column], utc=True, errors="coerce", format="ISO8601")
            start = pd.Timestamp(parse_timestamp(spec.dateRange.startDate))
            end = pd.Timestamp(parse_timestamp(spec.dateRange.endDate))
            mask &= (dates >= start) & (dates <= end)

        for f in spec.filters:
            if f.field not in df.columns:
                raise ValidationError(f"Unknown filter field: {f.field}", field="filters")
            mask &= _apply_operator(df[f.field], f.operator, f.value)

        if spec.search:
            text_columns = [c for c in df.columns if df[c].dtype == object]
            hits = pd.Series(False, index=df.index)
            for column in text_columns:
                hits |= df[column].astype(str).str.contains(spec.search, case=False, regex=False, na=False)
            mask &= hits

        return df[mask]

    # =========================================================================
    # AGGREGATION
    # =========================================================================

    def aggregate(self, df: pd.DataFrame, aggregations: List[AggregationConfig]) -> List[Dict[str, Any]]:
        group_fields: List[str] = []
        for agg in aggregations:
            for field in agg.groupBy or []:
                if field not in group_fields:
                    group_fields.append(field)

        if group_fields:
            missing = [f for f in group_fields if f not in df.columns]
            if missing:
                raise ValidationError(f"Unknown groupBy field(s): {', '.join(missing)}", field="groupBy")
            keyed = df.copy()
            for field in group_fields:
                keyed[field] = keyed[field].where(keyed[field].notna(), None)
            groups = [(dict(zip(group_fields, key if isinstance(key, tuple) else (key,))), frame)
                      for key, frame in keyed.groupby(group_fields, dropna=False, sort=True)]
        else:
            groups = [({}, df)]

        rows = []
        for values, frame in groups:
            row = {k: _native(v) for k, v in values.items()}
            for agg in aggregations:
                name = agg.alias or f"{agg.function.value}_{agg.field}"
                row[name] = _format(self.apply_aggregation(frame, agg), agg.format)
            row["_count"] = int(len(frame))
            rows.append(row)
        return rows

    @staticmethod
    def apply_aggregation(df: pd.DataFrame, agg: AggregationConfig) -> Any:
        if agg.function == AggregationFunction.COUNT:
            return int(len(df))
        if agg.field not in df.columns:
            raise ValidationError(f"Unknown aggregation field: {agg.field}", field="aggregations")

        values = df[agg.field].dropna()
        if agg.function == AggregationFunction.DISTINCT_COUNT:
            return int(values.nunique())

        numbers = pd.to_numeric(values, errors="coerce").dropna().to_numpy(dtype=float)
        if agg.function == AggregationFunction.SUM:
            return float(np.sum(numbers))
        if agg.function == AggregationFunction.AVERAGE:
            return float(np.mean(numbers)) if numbers.size else 0
        if agg.function == AggregationFunction.MIN:
            return float(np.min(numbers)) if numbers.size else 0
        if agg.function == AggregationFunction.MAX:
            return float(np.max(numbers)) if numbers.size else 0
        # percentage: share of the first value in the group total
        total = float(np.sum(numbers))
        return float(numbers[0] / total * 100) if total > 0 else 0

    # =========================================================================
    # FIELD CATALOG
    # =========================================================================

    def get_available_fields(self, source: str) -> List[Dict[str, str]]:
        source = self._source(source)
        columns = self.db.columns(SOURCE_TABLES[source])
        if source in _ENTITY_JOINED:
            columns = columns + ["entity_name", "entity_type"]
        return [
            {"field": c, "type": infer_field_type(c), "description": FIELD_DESCRIPTIONS.get(c, c)}
            for c in columns
        ]

    @staticmethod
    def _source(source: str) -> DataSourceType:
        try:
            return DataSourceType(source)
        except ValueError as e:
            allowed = ", ".join(s.value for s in DataSourceType)
            raise ValidationError(f"Unknown data source: {source}. Expected one of {allowed}", field="dataSource") from e


def infer_field_type(column: str) -> str:
    if column.endswith("_date") or column.endswith("_at"):
        return "date"
    if "quantity" in column or column.endswith("_number") or "rate" in column:
        return "number"
    if column.startswith("is_") or column.endswith("_enabled"):
        return "boolean"
    return "string"


def _apply_operator(series: pd.Series, operator: str, value: Any) -> pd.Series:
    if operator == "eq":
        return series == value
    if operator == "ne":
        return series != value
    if operator in ("gt", "gte", "lt", "lte"):
        left = pd.to_numeric(series, errors="coerce") if isinstance(value, (int, float)) else series
        return {
            "gt": left > value,
            "gte": left >= value,
            "lt": left < value,
            "lte": left <= value,
        }[operator].fillna(False)
    if operator in ("in", "nin"):
        members = value if isinstance(value, (list, tuple, set)) else [value]
        hits = series.isin(list(members))
        return hits if operator == "in" else ~hits
    text = series.astype(str)
    if operator == "contains":
        return text.str.contains(str(value), case=False, regex=False, na=False)
    if operator == "startsWith":
        return text.str.startswith(str(value), na=False)
    return text.str.endswith(str(value), na=False)


def _format(value: Any, fmt: Optional[str]) -> Any:
    if fmt == "number":
        return float(value)
    if fmt in ("percentage", "currency"):
        return round(float(value), 2)
    if fmt == "date":
        return parse_timestamp(value).isoformat()
    return value


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, float) and np.isnan(value))


def _native(value: Any) -> Any:
    if _is_missing(value):
        return None
    # numpy scalars from groupby keys
    return value.item() if isinstance(value, np.generic) else value


def _records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    return [{k: _native(v) for k, v in row.items()} for row in df.to_dict(orient="records")]
