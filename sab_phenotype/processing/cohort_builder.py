"""Cohort assembly: from source tables to one row per classified episode.

Hospital-acquired episodes appear only when linked to sustained
hypotension. Community-acquired episodes are emitted unconditionally with
empty hypotension fields; they never pass through the hypotension filter.
This asymmetry is intentional and kept as is.

Encounters are independent, so the work can be split across processes by
subject (a subject's encounters and labs stay in the same partition).
"""
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import fields, replace
from typing import List
import logging

import numpy as np
import pandas as pd
from tqdm import tqdm

from sab_phenotype.config.phenotype_config import DEFAULT_CONFIG, PhenotypeConfig
from sab_phenotype.extractors.table_loader import SourceTables
from sab_phenotype.processing.acquisition_classifier import AcquisitionType, classify_episodes
from sab_phenotype.processing.concordance import annotate_diagnosis_codes
from sab_phenotype.processing.episode_detector import detect_episodes
from sab_phenotype.processing.hypotension_builder import build_hypotension_intervals
from sab_phenotype.processing.hypotension_linker import link_hypotension
from sab_phenotype.processing.lookup_tables import CriterionLookupTables
from sab_phenotype.processing.qc_filters import (
    drop_invalid_admissions,
    drop_invalid_intervals,
    drop_missing,
    normalize_encounter_keys,
)
from sab_phenotype.processing.schemas import COHORT_SCHEMA, EPISODE_KEY, empty_frame

logger = logging.getLogger(__name__)

HOSPITAL_ACQUIRED = AcquisitionType.HOSPITAL_ACQUIRED.value
COMMUNITY_ACQUIRED = AcquisitionType.COMMUNITY_ACQUIRED.value


def clean_source_tables(tables: SourceTables) -> SourceTables:
    """Apply record-level QC to every event table.

    Returns:
        New SourceTables; dictionaries are passed through unchanged
    """
    microbiology = normalize_encounter_keys(tables.microbiology, "microbiologyevents")
    procedure_events = normalize_encounter_keys(tables.procedure_events, "procedureevents")
    diagnosis_procedures = normalize_encounter_keys(tables.diagnosis_procedures, "procedures_icd")
    chart_events = normalize_encounter_keys(tables.chart_events, "chartevents")
    diagnosis_codes = normalize_encounter_keys(tables.diagnosis_codes, "diagnoses_icd")
    # Lab rows are matched by subject only; hadm_id may be missing
    lab_events = normalize_encounter_keys(tables.lab_events, "labevents", key=["subject_id"])

    return replace(
        tables,
        admissions=drop_invalid_admissions(tables.admissions),
        microbiology=drop_missing(microbiology, ["charttime"], "microbiologyevents"),
        procedure_events=drop_invalid_intervals(
            procedure_events, "starttime", "endtime", "procedureevents", require_end=False
        ),
        diagnosis_procedures=drop_missing(diagnosis_procedures, ["icd_code"], "procedures_icd"),
        lab_events=drop_missing(lab_events, ["charttime"], "labevents"),
        chart_events=drop_missing(chart_events, ["charttime"], "chartevents"),
        diagnosis_codes=diagnosis_codes,
    )


def _format_hospital_rows(linked: pd.DataFrame) -> pd.DataFrame:
    result = linked.copy()
    result["presence_of_device"] = np.where(result["device"], "Yes", "No")
    return result


def _format_community_rows(community: pd.DataFrame) -> pd.DataFrame:
    result = community.copy()
    for col in ["hypotension_start", "hypotension_recover",
                "estimated_surgery_time", "invasive_procedure_time"]:
        result[col] = pd.NaT
    result["hypotension_duration_minutes"] = pd.array([pd.NA] * len(result), dtype="Int64")
    result["low_anc_days"] = pd.array([pd.NA] * len(result), dtype="Int64")
    result["presence_of_device"] = "No"
    return result


def _sort_cohort(cohort: pd.DataFrame) -> pd.DataFrame:
    return cohort.sort_values(EPISODE_KEY + ["acquisition_type"], kind="mergesort").reset_index(drop=True)


def assemble_cohort(classified: pd.DataFrame, linked: pd.DataFrame) -> pd.DataFrame:
    """Union hypotension-linked hospital-acquired rows with community rows.

    Args:
        classified: All classified episodes (with has_relevant_diagnosis_code)
        linked: Output of link_hypotension for hospital-acquired episodes

    Returns:
        DataFrame with COHORT_SCHEMA columns
    """
    hospital = _format_hospital_rows(linked[linked["acquisition_type"] == HOSPITAL_ACQUIRED])
    community = _format_community_rows(classified[classified["acquisition_type"] == COMMUNITY_ACQUIRED])

    parts = [part[list(COHORT_SCHEMA)] for part in (hospital, community) if not part.empty]
    if not parts:
        return empty_frame(COHORT_SCHEMA)

    cohort = pd.concat(parts, ignore_index=True)
    cohort = cohort.astype({
        "hypotension_duration_minutes": "Int64",
        "low_anc_days": "Int64",
        "has_relevant_diagnosis_code": "bool",
    })
    return _sort_cohort(cohort)


def build_cohort_partition(
    tables: SourceTables,
    lookups: CriterionLookupTables,
    config: PhenotypeConfig = DEFAULT_CONFIG,
) -> pd.DataFrame:
    """Run the full phenotype on one set of source tables.

    Args:
        tables: Source tables (all subjects, or one partition)
        lookups: Criterion lookup tables
        config: Phenotype thresholds

    Returns:
        Cohort rows with COHORT_SCHEMA columns
    """
    tables = clean_source_tables(tables)

    episodes = detect_episodes(tables.microbiology, tables.admissions, lookups, config)
    if episodes.empty:
        return empty_frame(COHORT_SCHEMA)

    classified = classify_episodes(
        episodes,
        tables.procedure_events,
        tables.diagnosis_procedures,
        tables.lab_events,
        lookups,
        config,
    )
    classified = annotate_diagnosis_codes(
        classified, tables.diagnosis_codes, lookups.diagnosis_reference_codes
    )

    intervals = build_hypotension_intervals(tables.chart_events, lookups.sbp_itemids, config)
    hospital = classified[classified["acquisition_type"] == HOSPITAL_ACQUIRED]
    linked = link_hypotension(hospital, intervals, config)

    return assemble_cohort(classified, linked)


def partition_tables(tables: SourceTables, n_partitions: int) -> List[SourceTables]:
    """Split every subject-keyed table by subject_id modulo n_partitions.

    Tables without a subject_id column (dictionaries) are shared by all
    partitions.
    """
    partitions = []
    for i in range(n_partitions):
        parts = {}
        for f in fields(tables):
            df = getattr(tables, f.name)
            if "subject_id" in df.columns:
                subject = pd.to_numeric(df["subject_id"], errors="coerce")
                df = df[(subject % n_partitions) == i]
            parts[f.name] = df
        partitions.append(SourceTables(**parts))
    return partitions


def build_cohort(
    tables: SourceTables,
    lookups: CriterionLookupTables,
    config: PhenotypeConfig = DEFAULT_CONFIG,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """Build the SAB cohort, optionally in parallel subject partitions.

    The result is identical for any n_jobs: rows are sorted by
    subject_id, hadm_id, sab_time.

    Args:
        tables: Source tables
        lookups: Criterion lookup tables
        config: Phenotype thresholds
        n_jobs: Worker processes (1 = run in this process)

    Returns:
        Cohort rows with COHORT_SCHEMA columns
    """
    if n_jobs <= 1:
        return build_cohort_partition(tables, lookups, config)

    partitions = partition_tables(tables, n_jobs)
    results = []
    with ProcessPoolExecutor(max_workers=n_jobs) as executor:
        futures = [executor.submit(build_cohort_partition, p, lookups, config) for p in partitions]
        with tqdm(total=len(futures), desc="  Building partitions", unit="partition") as pbar:
            for future in as_completed(futures):
                results.append(future.result())
                pbar.update(1)

    non_empty = [r for r in results if not r.empty]
    if not non_empty:
        return empty_frame(COHORT_SCHEMA)
    return _sort_cohort(pd.concat(non_empty, ignore_index=True))
