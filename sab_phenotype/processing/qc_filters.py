"""Record-level quality control for source tables.

Malformed records are dropped from the affected table only; no check here
ever aborts the pipeline.
"""
from typing import List, Optional
import logging

import pandas as pd

from sab_phenotype.processing.schemas import ENCOUNTER_KEY

logger = logging.getLogger(__name__)


def _log_rejected(table_name: str, reason: str, n_rejected: int) -> None:
    if n_rejected:
        logger.warning(f"{table_name}: rejected {n_rejected:,} records ({reason})")


def drop_missing(df: pd.DataFrame, columns: List[str], table_name: str) -> pd.DataFrame:
    """Drop records with a null (or unparseable) value in any required column.

    Args:
        df: Source table
        columns: Columns that must be present
        table_name: Name used in log messages

    Returns:
        Filtered DataFrame
    """
    mask = df[columns].notna().all(axis=1)
    _log_rejected(table_name, f"missing {', '.join(columns)}", int((~mask).sum()))
    return df[mask].reset_index(drop=True)


def normalize_encounter_keys(df: pd.DataFrame, table_name: str, key: Optional[List[str]] = None) -> pd.DataFrame:
    """Drop records without an encounter key and cast the key to int64."""
    key = key or ENCOUNTER_KEY
    result = drop_missing(df, key, table_name)
    return result.astype({col: "int64" for col in key})


def drop_invalid_intervals(
    df: pd.DataFrame,
    start_col: str,
    end_col: str,
    table_name: str,
    require_end: bool = True,
) -> pd.DataFrame:
    """Drop records whose interval is missing or ends before it starts.

    With require_end=False, open intervals (null end) are kept; only a
    missing start or an end before the start is rejected.

    Args:
        df: Table with start and end timestamp columns
        start_col: Interval start column
        end_col: Interval end column
        table_name: Name used in log messages
        require_end: Whether a null end makes the record invalid

    Returns:
        DataFrame with only well-formed intervals
    """
    required = [start_col, end_col] if require_end else [start_col]
    result = drop_missing(df, required, table_name)
    reversed_mask = result[end_col] < result[start_col]
    _log_rejected(table_name, f"{end_col} before {start_col}", int(reversed_mask.sum()))
    return result[~reversed_mask].reset_index(drop=True)


def drop_invalid_admissions(admissions: pd.DataFrame) -> pd.DataFrame:
    """Drop admissions with missing keys or discharge before admission."""
    result = normalize_encounter_keys(admissions, "admissions")
    return drop_invalid_intervals(result, "admittime", "dischtime", "admissions")
