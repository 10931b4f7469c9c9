"""Link SAB episodes to a concurrent sustained hypotension interval.

Hypotension must already be present at the culture time and continue for
at least 60 minutes afterwards. Hypotension starting after the culture is
never linked, since it cannot be shown to overlap the infection for the
required duration.
"""
import logging

import pandas as pd

from sab_phenotype.config.phenotype_config import DEFAULT_CONFIG, PhenotypeConfig
from sab_phenotype.processing.schemas import ENCOUNTER_KEY, EPISODE_KEY
from sab_phenotype.processing.temporal_windows import is_within_window, minutes_between

logger = logging.getLogger(__name__)

LINK_COLUMNS = {
    "start_time": "hypotension_start",
    "end_time": "hypotension_recover",
    "duration_minutes": "hypotension_duration_minutes",
}


def link_hypotension(
    episodes: pd.DataFrame,
    intervals: pd.DataFrame,
    config: PhenotypeConfig = DEFAULT_CONFIG,
) -> pd.DataFrame:
    """Keep episodes with a qualifying hypotension interval.

    An interval qualifies when start <= sab_time <= end,
    end - sab_time >= min_post_sentinel_minutes, and the culture lies
    within the admission. When several intervals qualify, the one that
    starts earliest is kept, so each episode appears at most once.

    Args:
        episodes: Classified episodes (with admittime, dischtime)
        intervals: Output of build_hypotension_intervals
        config: Phenotype thresholds

    Returns:
        Linked episodes with hypotension_start, hypotension_recover and
        hypotension_duration_minutes columns
    """
    paired = episodes.merge(intervals, on=ENCOUNTER_KEY)

    overlaps = is_within_window(paired["sab_time"], paired["start_time"], paired["end_time"])
    continues = minutes_between(paired["end_time"], paired["sab_time"]) >= config.min_post_sentinel_minutes
    in_admission = is_within_window(paired["sab_time"], paired["admittime"], paired["dischtime"])

    linked = (
        paired[overlaps & continues & in_admission]
        .sort_values(EPISODE_KEY + ["start_time"], kind="mergesort")
        .drop_duplicates(subset=EPISODE_KEY, keep="first")
        .rename(columns=LINK_COLUMNS)
        .reset_index(drop=True)
    )
    linked["hypotension_duration_minutes"] = linked["hypotension_duration_minutes"].astype("Int64")

    logger.info(f"Linked {len(linked):,} of {len(episodes):,} episodes to sustained hypotension")
    return linked
