"""Acquisition classification for SAB episodes.

Late-onset episodes (culture > 48h after admission) are hospital-acquired
outright. Early-onset episodes are hospital-acquired when at least one of
four sub-criteria holds at the sentinel time:

- Device: an indwelling device was in place at the culture time
- Surgery: culture within 30 days of (estimated) surgery
- Invasive: device instrumentation started within 48h of the culture
- Neutropenia: ANC < 0.5 on >= 2 calendar days within +/- 3 days

Otherwise they are community-acquired.
"""
from enum import Enum
from typing import FrozenSet, Mapping, Tuple
import logging

import pandas as pd

from sab_phenotype.config.phenotype_config import DEFAULT_CONFIG, PhenotypeConfig
from sab_phenotype.processing.episode_detector import EARLY_ONSET, LATE_ONSET
from sab_phenotype.processing.lookup_tables import CriterionLookupTables, normalize_icd_codes
from sab_phenotype.processing.schemas import CLASSIFIED_SCHEMA, ENCOUNTER_KEY, EPISODE_KEY, empty_frame
from sab_phenotype.processing.temporal_windows import calendar_day_offset, is_within_window

logger = logging.getLogger(__name__)


class AcquisitionType(Enum):
    """Where the bacteremia was acquired."""
    HOSPITAL_ACQUIRED = "Hospital-Acquired"
    COMMUNITY_ACQUIRED = "Community-Acquired"


class SubCriterion(Enum):
    """Early-onset criteria that make an episode hospital-acquired."""
    DEVICE = "Device"
    SURGERY = "Surgery"
    INVASIVE = "Invasive"
    NEUTROPENIA = "Neutropenia"


# Boolean column carrying each sub-criterion result
CRITERION_COLUMNS = {
    SubCriterion.DEVICE: "device",
    SubCriterion.SURGERY: "surgery",
    SubCriterion.INVASIVE: "invasive",
    SubCriterion.NEUTROPENIA: "neutropenia",
}


def _flag(episodes: pd.DataFrame, hits: pd.DataFrame, column: str) -> pd.DataFrame:
    """Mark episodes that have at least one hit row."""
    keys = hits[EPISODE_KEY].drop_duplicates().assign(**{column: True})
    result = episodes[EPISODE_KEY].merge(keys, on=EPISODE_KEY, how="left")
    result[column] = result[column].eq(True)
    return result


def _device_procedures(procedure_events: pd.DataFrame, device_itemids) -> pd.DataFrame:
    return procedure_events[procedure_events["itemid"].isin(sorted(device_itemids))]


def evaluate_device(
    episodes: pd.DataFrame,
    procedure_events: pd.DataFrame,
    device_itemids: FrozenSet[int],
) -> pd.DataFrame:
    """Device criterion: a device interval contains the sentinel time.

    Both interval ends are inclusive. Rows without an endtime are
    ignored here; they still count for the Invasive criterion.

    Returns:
        EPISODE_KEY columns plus boolean 'device'
    """
    devices = _device_procedures(procedure_events, device_itemids).dropna(subset=["endtime"])
    paired = episodes[EPISODE_KEY].merge(
        devices[ENCOUNTER_KEY + ["starttime", "endtime"]], on=ENCOUNTER_KEY
    )
    hits = paired[is_within_window(paired["sab_time"], paired["starttime"], paired["endtime"])]
    return _flag(episodes, hits, "device")


def evaluate_surgery(
    episodes: pd.DataFrame,
    diagnosis_procedures: pd.DataFrame,
    surgical_icd_codes: FrozenSet[str],
    config: PhenotypeConfig = DEFAULT_CONFIG,
) -> pd.DataFrame:
    """Surgery criterion: culture within 30 days of the estimated surgery.

    Surgical timestamps are unavailable, so surgery is assumed to happen
    surgery_offset_days after admission; the window is
    [estimated_time, estimated_time + surgery_window_days].

    Returns:
        EPISODE_KEY columns plus 'surgery' and 'estimated_surgery_time'
    """
    codes = normalize_icd_codes(diagnosis_procedures["icd_code"])
    surgical = diagnosis_procedures.loc[codes.isin(sorted(surgical_icd_codes)), ENCOUNTER_KEY]
    paired = episodes[EPISODE_KEY + ["admittime"]].merge(
        surgical.drop_duplicates(), on=ENCOUNTER_KEY
    )
    paired["estimated_surgery_time"] = paired["admittime"] + pd.Timedelta(days=config.surgery_offset_days)
    window_end = paired["estimated_surgery_time"] + pd.Timedelta(days=config.surgery_window_days)
    hits = paired[is_within_window(paired["sab_time"], paired["estimated_surgery_time"], window_end)]

    result = _flag(episodes, hits, "surgery")
    earliest = hits.groupby(EPISODE_KEY, as_index=False)["estimated_surgery_time"].min()
    return result.merge(earliest, on=EPISODE_KEY, how="left")


def evaluate_invasive(
    episodes: pd.DataFrame,
    procedure_events: pd.DataFrame,
    device_itemids: FrozenSet[int],
    config: PhenotypeConfig = DEFAULT_CONFIG,
) -> pd.DataFrame:
    """Invasive criterion: device procedure started within 48h of culture.

    The window is symmetric: |starttime - sab_time| <= invasive_window_hours.

    Returns:
        EPISODE_KEY columns plus 'invasive' and 'invasive_procedure_time'
    """
    devices = _device_procedures(procedure_events, device_itemids)
    paired = episodes[EPISODE_KEY].merge(devices[ENCOUNTER_KEY + ["starttime"]], on=ENCOUNTER_KEY)
    window = pd.Timedelta(hours=config.invasive_window_hours)
    hits = paired[(paired["starttime"] - paired["sab_time"]).abs() <= window]

    result = _flag(episodes, hits, "invasive")
    earliest = (
        hits.groupby(EPISODE_KEY, as_index=False)["starttime"].min()
        .rename(columns={"starttime": "invasive_procedure_time"})
    )
    return result.merge(earliest, on=EPISODE_KEY, how="left")


def evaluate_neutropenia(
    episodes: pd.DataFrame,
    lab_events: pd.DataFrame,
    anc_itemids: FrozenSet[int],
    config: PhenotypeConfig = DEFAULT_CONFIG,
) -> pd.DataFrame:
    """Neutropenia criterion: low ANC on enough distinct calendar days.

    Labs are matched on subject_id only, since many lab rows carry no
    hadm_id. Null values never count as low.

    Returns:
        EPISODE_KEY columns plus 'neutropenia' and 'low_anc_days'
        (low_anc_days is null unless the criterion holds)
    """
    anc = lab_events[lab_events["itemid"].isin(sorted(anc_itemids))]
    low = anc[anc["value"].notna() & (anc["value"] < config.anc_threshold)]

    paired = episodes[EPISODE_KEY].merge(
        low[["subject_id", "charttime"]], on="subject_id"
    )
    day_offset = calendar_day_offset(paired["charttime"], paired["sab_time"])
    in_window = paired[day_offset.abs() <= config.anc_window_days]

    days = (
        in_window.assign(anc_date=in_window["charttime"].dt.normalize())
        .groupby(EPISODE_KEY, as_index=False)["anc_date"].nunique()
        .rename(columns={"anc_date": "low_anc_days"})
    )
    days = days[days["low_anc_days"] >= config.anc_min_days]

    result = _flag(episodes, days, "neutropenia")
    result = result.merge(days, on=EPISODE_KEY, how="left")
    result["low_anc_days"] = result["low_anc_days"].astype("Int64")
    return result


def decide_acquisition(
    flags: Mapping[SubCriterion, bool]
) -> Tuple[AcquisitionType, FrozenSet[SubCriterion]]:
    """Combine sub-criterion results into the acquisition decision.

    Args:
        flags: Result of each sub-criterion

    Returns:
        (acquisition type, set of true sub-criteria)
    """
    qualifying = frozenset(criterion for criterion, met in flags.items() if met)
    if qualifying:
        return AcquisitionType.HOSPITAL_ACQUIRED, qualifying
    return AcquisitionType.COMMUNITY_ACQUIRED, frozenset()


def _classify_early(
    early: pd.DataFrame,
    procedure_events: pd.DataFrame,
    diagnosis_procedures: pd.DataFrame,
    lab_events: pd.DataFrame,
    lookups: CriterionLookupTables,
    config: PhenotypeConfig,
) -> pd.DataFrame:
    """Evaluate all four sub-criteria for early-onset episodes."""
    result = early.copy()
    for evaluation in (
        evaluate_device(early, procedure_events, lookups.device_itemids),
        evaluate_surgery(early, diagnosis_procedures, lookups.surgical_icd_codes, config),
        evaluate_invasive(early, procedure_events, lookups.device_itemids, config),
        evaluate_neutropenia(early, lab_events, lookups.anc_itemids, config),
    ):
        result = result.merge(evaluation, on=EPISODE_KEY, how="left")

    decisions = [
        decide_acquisition({c: bool(row[col]) for c, col in CRITERION_COLUMNS.items()})
        for _, row in result[list(CRITERION_COLUMNS.values())].iterrows()
    ]
    result["acquisition_type"] = [acq.value for acq, _ in decisions]
    result["qualifying_subcriteria"] = [qualifying for _, qualifying in decisions]
    return result


def _classify_late(late: pd.DataFrame) -> pd.DataFrame:
    """Late-onset episodes: hospital-acquired, no sub-criterion evaluated."""
    result = late.copy()
    for col in CRITERION_COLUMNS.values():
        result[col] = False
    result["estimated_surgery_time"] = pd.NaT
    result["invasive_procedure_time"] = pd.NaT
    result["low_anc_days"] = pd.array([pd.NA] * len(result), dtype="Int64")
    result["acquisition_type"] = AcquisitionType.HOSPITAL_ACQUIRED.value
    result["qualifying_subcriteria"] = [frozenset()] * len(result)
    return result


def classify_episodes(
    episodes: pd.DataFrame,
    procedure_events: pd.DataFrame,
    diagnosis_procedures: pd.DataFrame,
    lab_events: pd.DataFrame,
    lookups: CriterionLookupTables,
    config: PhenotypeConfig = DEFAULT_CONFIG,
) -> pd.DataFrame:
    """Assign an acquisition type to every detected episode.

    Args:
        episodes: Output of detect_episodes
        procedure_events: Procedure intervals (itemid, starttime, endtime)
        diagnosis_procedures: ICD procedure codes per encounter
        lab_events: Lab results (itemid, charttime, value)
        lookups: Criterion lookup tables
        config: Phenotype thresholds

    Returns:
        DataFrame with CLASSIFIED_SCHEMA columns, one row per episode
    """
    if episodes.empty:
        return empty_frame(CLASSIFIED_SCHEMA)

    late = episodes[episodes["onset_case"] == LATE_ONSET]
    early = episodes[episodes["onset_case"] == EARLY_ONSET]

    parts = []
    if not late.empty:
        parts.append(_classify_late(late))
    if not early.empty:
        parts.append(_classify_early(
            early, procedure_events, diagnosis_procedures, lab_events, lookups, config
        ))

    classified = pd.concat(parts, ignore_index=True)
    classified["low_anc_days"] = classified["low_anc_days"].astype("Int64")
    for col in ("estimated_surgery_time", "invasive_procedure_time"):
        classified[col] = pd.to_datetime(classified[col])

    n_ha = int((classified["acquisition_type"] == AcquisitionType.HOSPITAL_ACQUIRED.value).sum())
    logger.info(
        f"Classified {len(classified):,} episodes: {len(late):,} late onset, "
        f"{n_ha:,} hospital-acquired in total"
    )

    return classified[list(CLASSIFIED_SCHEMA)].sort_values(EPISODE_KEY).reset_index(drop=True)
