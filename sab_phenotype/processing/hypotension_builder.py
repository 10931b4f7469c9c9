"""Sustained hypotension intervals from systolic blood pressure readings.

Each low reading (SBP < 100) opens an interval that closes at the earliest
later normal reading (SBP >= 100) of the same encounter. Intervals shorter
than 60 minutes are discarded, as are low readings never followed by a
normal one.
"""
from typing import FrozenSet
import logging

import pandas as pd

from sab_phenotype.config.phenotype_config import DEFAULT_CONFIG, PhenotypeConfig
from sab_phenotype.processing.schemas import ENCOUNTER_KEY, HYPOTENSION_SCHEMA, empty_frame
from sab_phenotype.processing.temporal_windows import minutes_between

logger = logging.getLogger(__name__)


def select_sbp_readings(chart_events: pd.DataFrame, sbp_itemids: FrozenSet[int]) -> pd.DataFrame:
    """Systolic pressure readings with a usable value and timestamp.

    Args:
        chart_events: Vital sign readings (itemid, charttime, value)
        sbp_itemids: Item ids for systolic blood pressure

    Returns:
        Readings restricted to SBP items, nulls removed
    """
    sbp = chart_events[chart_events["itemid"].isin(sorted(sbp_itemids))]
    return sbp.dropna(subset=["charttime", "value"]).reset_index(drop=True)


def _readings_at(readings: pd.DataFrame, mask: pd.Series, time_col: str) -> pd.DataFrame:
    """Distinct reading times per encounter, sorted for the as-of merge."""
    return (
        readings.loc[mask, ENCOUNTER_KEY + ["charttime"]]
        .drop_duplicates()
        .rename(columns={"charttime": time_col})
        .sort_values(time_col, kind="mergesort")
        .reset_index(drop=True)
    )


def build_hypotension_intervals(
    chart_events: pd.DataFrame,
    sbp_itemids: FrozenSet[int],
    config: PhenotypeConfig = DEFAULT_CONFIG,
) -> pd.DataFrame:
    """Build sustained hypotension intervals per encounter.

    Pairs every distinct low reading time with the minimum strictly later
    normal reading time using a forward as-of merge by encounter, which is
    a sorted sweep rather than a pairwise join.

    Args:
        chart_events: Vital sign readings
        sbp_itemids: Item ids for systolic blood pressure
        config: Phenotype thresholds

    Returns:
        DataFrame with HYPOTENSION_SCHEMA columns
    """
    readings = select_sbp_readings(chart_events, sbp_itemids)
    is_low = readings["value"] < config.sbp_threshold

    low = _readings_at(readings, is_low, "start_time")
    normal = _readings_at(readings, ~is_low, "end_time")
    if low.empty or normal.empty:
        return empty_frame(HYPOTENSION_SCHEMA)

    paired = pd.merge_asof(
        low,
        normal,
        left_on="start_time",
        right_on="end_time",
        by=ENCOUNTER_KEY,
        direction="forward",
        allow_exact_matches=False,
    )

    n_open = int(paired["end_time"].isna().sum())
    if n_open:
        logger.info(f"{n_open:,} low SBP readings have no later normal reading; dropped")

    paired = paired.dropna(subset=["end_time"])
    paired["duration_minutes"] = minutes_between(paired["end_time"], paired["start_time"]).astype("int64")
    sustained = paired[paired["duration_minutes"] >= config.min_hypotension_minutes]

    return (
        sustained[list(HYPOTENSION_SCHEMA)]
        .sort_values(ENCOUNTER_KEY + ["start_time"])
        .reset_index(drop=True)
    )
