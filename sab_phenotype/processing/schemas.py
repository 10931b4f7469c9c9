"""Column schemas for derived SAB phenotype tables."""
from typing import Dict, List
import pandas as pd

# Encounter and episode join keys
ENCOUNTER_KEY: List[str] = ["subject_id", "hadm_id"]
EPISODE_KEY: List[str] = ["subject_id", "hadm_id", "sab_time"]

# Detected episodes (one per encounter)
EPISODE_SCHEMA: Dict[str, str] = {
    "subject_id": "int64",
    "hadm_id": "int64",
    "sab_time": "datetime64[ns]",
    "admittime": "datetime64[ns]",
    "dischtime": "datetime64[ns]",
    "onset_hours": "float64",
    "onset_case": "object",
}

# Classified episodes, after the acquisition decision
CLASSIFIED_SCHEMA: Dict[str, str] = {
    **EPISODE_SCHEMA,
    "device": "bool",
    "surgery": "bool",
    "invasive": "bool",
    "neutropenia": "bool",
    "estimated_surgery_time": "datetime64[ns]",
    "invasive_procedure_time": "datetime64[ns]",
    "low_anc_days": "Int64",
    "acquisition_type": "object",
    "qualifying_subcriteria": "object",
}

# Sustained hypotension intervals
HYPOTENSION_SCHEMA: Dict[str, str] = {
    "subject_id": "int64",
    "hadm_id": "int64",
    "start_time": "datetime64[ns]",
    "end_time": "datetime64[ns]",
    "duration_minutes": "int64",
}

# Final cohort output row
COHORT_SCHEMA: Dict[str, str] = {
    "subject_id": "int64",
    "hadm_id": "int64",
    "sab_time": "datetime64[ns]",
    "hypotension_start": "datetime64[ns]",
    "hypotension_recover": "datetime64[ns]",
    "hypotension_duration_minutes": "Int64",
    "presence_of_device": "object",
    "estimated_surgery_time": "datetime64[ns]",
    "invasive_procedure_time": "datetime64[ns]",
    "low_anc_days": "Int64",
    "has_relevant_diagnosis_code": "bool",
    "acquisition_type": "object",
}


def empty_frame(schema: Dict[str, str]) -> pd.DataFrame:
    """Create an empty DataFrame with the given column dtypes."""
    return pd.DataFrame({col: pd.Series(dtype=dtype) for col, dtype in schema.items()})
