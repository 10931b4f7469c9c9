"""Episode detection: sentinel blood culture per encounter.

The sentinel is the earliest positive S. aureus blood culture of an
encounter. Its offset from admission splits episodes into late onset
(hospital-acquired by definition) and early onset (classified further).
"""
from typing import Iterable
import numpy as np
import pandas as pd

from sab_phenotype.config.phenotype_config import DEFAULT_CONFIG, PhenotypeConfig
from sab_phenotype.processing.lookup_tables import CriterionLookupTables, match_all_tokens
from sab_phenotype.processing.schemas import ENCOUNTER_KEY, EPISODE_SCHEMA, empty_frame
from sab_phenotype.processing.temporal_windows import hours_between

LATE_ONSET = "late"
EARLY_ONSET = "early"

# Secondary sort key for simultaneous cultures, when the source carries it
TIE_BREAK_COLUMN = "microevent_id"


def filter_infection_evidence(
    microbiology: pd.DataFrame,
    specimen_tokens: Iterable[str],
    organism_tokens: Iterable[str],
) -> pd.DataFrame:
    """Keep blood specimens growing the target organism.

    Every organism token must appear in organism_name (e.g. 'staph' and
    'aureus'); matching is case-insensitive.

    Args:
        microbiology: Microbiology events
        specimen_tokens: Tokens required in specimen_type_description
        organism_tokens: Tokens required in organism_name

    Returns:
        Qualifying infection-evidence events
    """
    mask = (
        match_all_tokens(microbiology["specimen_type_description"], specimen_tokens)
        & match_all_tokens(microbiology["organism_name"], organism_tokens)
    )
    return microbiology[mask].reset_index(drop=True)


def select_sentinels(evidence: pd.DataFrame) -> pd.DataFrame:
    """Select exactly one sentinel event per encounter.

    Events are ordered by charttime, then by microevent_id when present,
    then by input position, so simultaneous cultures always resolve to the
    same record.

    Args:
        evidence: Qualifying infection-evidence events

    Returns:
        The chosen evidence rows, with charttime renamed to sab_time
    """
    ordered = evidence.assign(_row_order=np.arange(len(evidence)))
    sort_cols = ENCOUNTER_KEY + ["charttime"]
    if TIE_BREAK_COLUMN in ordered.columns:
        sort_cols.append(TIE_BREAK_COLUMN)
    sort_cols.append("_row_order")

    sentinels = (
        ordered.sort_values(sort_cols, kind="mergesort")
        .drop_duplicates(subset=ENCOUNTER_KEY, keep="first")
        .rename(columns={"charttime": "sab_time"})
    )
    return sentinels.drop(columns=["_row_order"]).reset_index(drop=True)


def detect_episodes(
    microbiology: pd.DataFrame,
    admissions: pd.DataFrame,
    lookups: CriterionLookupTables,
    config: PhenotypeConfig = DEFAULT_CONFIG,
) -> pd.DataFrame:
    """Detect SAB episodes and split them by onset relative to admission.

    Encounters without a qualifying culture, or without an admission
    record, produce no episode.

    Args:
        microbiology: Microbiology events
        admissions: Admissions (admittime, dischtime)
        lookups: Criterion lookup tables (evidence tokens)
        config: Phenotype thresholds

    Returns:
        DataFrame with EPISODE_SCHEMA columns
    """
    evidence = filter_infection_evidence(
        microbiology, lookups.specimen_tokens, lookups.organism_tokens
    )
    if evidence.empty:
        return empty_frame(EPISODE_SCHEMA)

    sentinels = select_sentinels(evidence)
    episodes = sentinels[ENCOUNTER_KEY + ["sab_time"]].merge(
        admissions[ENCOUNTER_KEY + ["admittime", "dischtime"]],
        on=ENCOUNTER_KEY,
        how="inner",
    )

    offset = episodes["sab_time"] - episodes["admittime"]
    episodes["onset_hours"] = hours_between(episodes["sab_time"], episodes["admittime"])
    episodes["onset_case"] = np.where(
        offset > pd.Timedelta(hours=config.early_onset_hours), LATE_ONSET, EARLY_ONSET
    )

    return episodes[list(EPISODE_SCHEMA)].sort_values(ENCOUNTER_KEY).reset_index(drop=True)
