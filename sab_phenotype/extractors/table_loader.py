"""Load exported MIMIC-IV tables into the pipeline's input contract.

Each table is read from <data_dir>/<name>.parquet, .csv.gz or .csv.
Source column names are mapped to contract names, timestamps and numeric
values are coerced (unparseable values become NaT / NaN and are rejected
later by the QC filters).
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple
import logging

import pandas as pd

from sab_phenotype.processing.lookup_tables import CriterionLookupTables, build_lookup_tables

logger = logging.getLogger(__name__)

TABLE_SUFFIXES = (".parquet", ".csv.gz", ".csv")
CHUNK_SIZE = 1_000_000  # Rows per chunk for large event tables

# Per table: required contract columns, optional columns, renames from the
# MIMIC-IV source names, and column types to coerce. "text" columns are read
# as strings so ICD codes keep their leading zeros.
TABLE_CONTRACTS: Dict[str, Dict] = {
    "admissions": {
        "columns": ["subject_id", "hadm_id", "admittime", "dischtime"],
        "datetime": ["admittime", "dischtime"],
    },
    "microbiologyevents": {
        "columns": ["subject_id", "hadm_id", "charttime",
                    "specimen_type_description", "organism_name"],
        "optional": ["microevent_id"],
        "rename": {"spec_type_desc": "specimen_type_description", "org_name": "organism_name"},
        "datetime": ["charttime"],
    },
    "procedureevents": {
        "columns": ["subject_id", "hadm_id", "itemid", "starttime", "endtime",
                    "order_category_name"],
        "rename": {"ordercategoryname": "order_category_name"},
        "datetime": ["starttime", "endtime"],
    },
    "d_items": {
        "columns": ["itemid", "label"],
    },
    "procedures_icd": {
        "columns": ["subject_id", "hadm_id", "icd_code"],
        "optional": ["icd_version"],
        "text": ["icd_code"],
    },
    "d_icd_procedures": {
        "columns": ["icd_code", "long_title"],
        "optional": ["icd_version"],
        "text": ["icd_code"],
    },
    "labevents": {
        "columns": ["subject_id", "hadm_id", "itemid", "charttime", "value"],
        "rename": {"valuenum": "value"},
        "datetime": ["charttime"],
        "numeric": ["value"],
    },
    "d_labitems": {
        "columns": ["itemid", "label"],
    },
    "chartevents": {
        "columns": ["subject_id", "hadm_id", "itemid", "charttime", "value"],
        "rename": {"valuenum": "value"},
        "datetime": ["charttime"],
        "numeric": ["value"],
    },
    "diagnoses_icd": {
        "columns": ["subject_id", "hadm_id", "icd_code", "icd_version"],
        "text": ["icd_code"],
    },
}


@dataclass
class SourceTables:
    """Input streams of the phenotype, already in contract column names."""
    admissions: pd.DataFrame
    microbiology: pd.DataFrame
    procedure_events: pd.DataFrame
    procedure_dictionary: pd.DataFrame
    diagnosis_procedures: pd.DataFrame
    procedure_code_dictionary: pd.DataFrame
    lab_events: pd.DataFrame
    lab_dictionary: pd.DataFrame
    chart_events: pd.DataFrame
    vitals_dictionary: pd.DataFrame
    diagnosis_codes: pd.DataFrame


def find_table_file(data_dir: Path, name: str) -> Path:
    """Locate a table export, preferring parquet over csv."""
    for suffix in TABLE_SUFFIXES:
        candidate = Path(data_dir) / f"{name}{suffix}"
        if candidate.exists():
            return candidate
    raise FileNotFoundError(
        f"No export found for table '{name}' in {data_dir} (looked for {', '.join(TABLE_SUFFIXES)})"
    )


def _source_columns(contract: Dict) -> set:
    """All column names worth reading, in source or contract naming."""
    wanted = set(contract["columns"]) | set(contract.get("optional", []))
    return wanted | set(contract.get("rename", {}))


def read_table(
    path: Path,
    contract: Dict,
    itemids: Optional[Iterable[int]] = None,
    chunk_size: int = CHUNK_SIZE,
) -> pd.DataFrame:
    """Read a table export, optionally keeping only the given itemids.

    CSV exports are streamed in chunks so that large event tables are
    filtered before they are held in memory.

    Args:
        path: Table file
        contract: Entry of TABLE_CONTRACTS
        itemids: If given, only rows with these itemids are kept
        chunk_size: Rows per CSV chunk

    Returns:
        Raw DataFrame (source column names)
    """
    wanted = _source_columns(contract)
    keep = sorted(itemids) if itemids is not None else None

    if path.suffix == ".parquet":
        df = pd.read_parquet(path)
        df = df[[c for c in df.columns if c in wanted]]
        if keep is not None:
            df = df[df["itemid"].isin(keep)]
        return df.reset_index(drop=True)

    chunks = []
    text_dtypes = {col: str for col in contract.get("text", [])}
    for chunk in pd.read_csv(
        path,
        usecols=lambda c: c in wanted,
        dtype=text_dtypes,
        chunksize=chunk_size,
        low_memory=False,
    ):
        if keep is not None:
            chunk = chunk[chunk["itemid"].isin(keep)]
        chunks.append(chunk)

    if not chunks:
        return pd.DataFrame(columns=sorted(wanted))
    return pd.concat(chunks, ignore_index=True)


def standardize_table(df: pd.DataFrame, contract: Dict, name: str) -> pd.DataFrame:
    """Rename to contract columns and coerce types.

    Raises:
        ValueError: If a required column is missing
    """
    result = df.copy()
    for source, target in contract.get("rename", {}).items():
        if source in result.columns:
            result = result.drop(columns=[target], errors="ignore").rename(columns={source: target})

    missing = [c for c in contract["columns"] if c not in result.columns]
    if missing:
        raise ValueError(f"Table '{name}' is missing required columns: {missing}")

    for col in contract.get("datetime", []):
        result[col] = pd.to_datetime(result[col], errors="coerce")
    for col in contract.get("numeric", []):
        result[col] = pd.to_numeric(result[col], errors="coerce")

    columns = contract["columns"] + [c for c in contract.get("optional", []) if c in result.columns]
    return result[columns]


def load_table(
    data_dir: Path,
    name: str,
    itemids: Optional[Iterable[int]] = None,
) -> pd.DataFrame:
    """Locate, read and standardize one table."""
    contract = TABLE_CONTRACTS[name]
    path = find_table_file(data_dir, name)
    df = standardize_table(read_table(path, contract, itemids), contract, name)
    logger.info(f"Loaded {len(df):,} rows from {path.name}")
    return df


def load_source_tables(
    data_dir: Path,
    vocabulary: Dict,
) -> Tuple[SourceTables, CriterionLookupTables]:
    """Load every input stream and resolve the criterion lookup tables.

    Dictionaries are read first so that the large lab and chart event
    tables can be restricted to the ANC and SBP items while reading.

    Args:
        data_dir: Directory holding the table exports
        vocabulary: Parsed criteria.yaml

    Returns:
        (SourceTables, CriterionLookupTables)
    """
    data_dir = Path(data_dir)

    procedure_events = load_table(data_dir, "procedureevents")
    procedure_dictionary = (
        procedure_events[["itemid", "order_category_name"]]
        .dropna()
        .drop_duplicates()
        .reset_index(drop=True)
    )
    vitals_dictionary = load_table(data_dir, "d_items")
    lab_dictionary = load_table(data_dir, "d_labitems")
    procedure_code_dictionary = load_table(data_dir, "d_icd_procedures")

    lookups = build_lookup_tables(
        procedure_dictionary,
        procedure_code_dictionary,
        lab_dictionary,
        vitals_dictionary,
        vocabulary,
    )
    logger.info(
        f"Lookups: {len(lookups.device_itemids)} device items, {len(lookups.anc_itemids)} ANC items, "
        f"{len(lookups.sbp_itemids)} SBP items, {len(lookups.surgical_icd_codes)} surgical codes"
    )

    tables = SourceTables(
        admissions=load_table(data_dir, "admissions"),
        microbiology=load_table(data_dir, "microbiologyevents"),
        procedure_events=procedure_events.drop(columns=["order_category_name"]),
        procedure_dictionary=procedure_dictionary,
        diagnosis_procedures=load_table(data_dir, "procedures_icd"),
        procedure_code_dictionary=procedure_code_dictionary,
        lab_events=load_table(data_dir, "labevents", itemids=lookups.anc_itemids),
        lab_dictionary=lab_dictionary,
        chart_events=load_table(data_dir, "chartevents", itemids=lookups.sbp_itemids),
        vitals_dictionary=vitals_dictionary,
        diagnosis_codes=load_table(data_dir, "diagnoses_icd"),
    )
    return tables, lookups
