# =============================================================================
# drms_core/exports/csv_export.py
# Tabular Exports (CSV via pandas)
# =============================================================================

from __future__ import annotations
import json
from typing import Dict, Optional

import pandas as pd

from drms_core.data.database import Database
from drms_core.errors import ValidationError
from drms_core.models.records import utcnow

# Exportable data types and their tables
EXPORT_TABLES: Dict[str, str] = {
    "assessments": "rapid_assessments",
    "responses": "rapid_responses",
    "entities": "entities",
    "incidents": "incidents",
    "commitments": "donor_commitments",
    "donors": "donors",
}

# Never leave the server
EXCLUDED_COLUMNS = ("password_hash",)


def load_export_frame(
    db: Database,
    data_type: str,
    entity_ids: Optional[list] = None,
) -> pd.DataFrame:
    """
    Load a table for export; JSON columns are re-serialized so they survive
    a CSV round trip.
    """
    table = EXPORT_TABLES.get(data_type)
    if table is None:
        raise ValidationError(
            f"Unsupported dataType: {data_type}. Expected one of {', '.join(EXPORT_TABLES)}",
            field="dataType",
        )

    df = db.to_dataframe(table)
    if entity_ids is not None and "entity_id" in df.columns:
        df = df[df["entity_id"].isin(entity_ids)]
    elif entity_ids is not None and data_type == "entities":
        df = df[df["id"].isin(entity_ids)]

    df = df.drop(columns=[c for c in EXCLUDED_COLUMNS if c in df.columns])
    for column in db.JSON_COLUMNS.get(table, ()):
        if column in df.columns:
            df[column] = df[column].map(lambda v: json.dumps(v) if v is not None else "")
    return df


def to_csv(df: pd.DataFrame) -> str:
    return df.to_csv(index=False)


def export_filename(data_type: str, extension: str = "csv") -> str:
    return f"{data_type}-export-{utcnow().strftime('%Y-%m-%d')}.{extension}"
