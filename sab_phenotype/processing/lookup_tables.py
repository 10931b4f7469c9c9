"""Criterion lookup tables built from terminology dictionaries.

The lookups are computed once per run and passed explicitly to each
component; they are never modified afterwards.
"""
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

import pandas as pd


@dataclass(frozen=True)
class CriterionLookupTables:
    """Static reference sets used by the classification criteria."""
    device_itemids: FrozenSet[int]
    anc_itemids: FrozenSet[int]
    sbp_itemids: FrozenSet[int]
    surgical_icd_codes: FrozenSet[str]
    diagnosis_reference_codes: FrozenSet[Tuple[str, int]]
    specimen_tokens: Tuple[str, ...] = ("blood",)
    organism_tokens: Tuple[str, ...] = ("staph", "aureus")


def normalize_icd_code(code: Optional[str]) -> str:
    """Normalize an ICD code: strip whitespace and dots, uppercase.

    Args:
        code: Raw ICD code (e.g., 'a41.0 ')

    Returns:
        Normalized code (e.g., 'A410'), empty string for missing codes
    """
    if code is None or pd.isna(code):
        return ""
    return str(code).strip().upper().replace(".", "")


def normalize_icd_codes(codes: pd.Series) -> pd.Series:
    """Vectorized normalize_icd_code."""
    return (
        codes.astype("string")
        .str.strip()
        .str.upper()
        .str.replace(".", "", regex=False)
        .fillna("")
        .astype(object)
    )


def match_any_token(text: pd.Series, tokens: Iterable[str]) -> pd.Series:
    """Case-insensitive substring match against any of the tokens."""
    lowered = text.astype("string").str.lower()
    mask = pd.Series(False, index=text.index)
    for token in tokens:
        mask |= lowered.str.contains(token.lower(), regex=False).fillna(False).astype(bool)
    return mask


def match_all_tokens(text: pd.Series, tokens: Iterable[str]) -> pd.Series:
    """Case-insensitive substring match requiring every token."""
    lowered = text.astype("string").str.lower()
    mask = pd.Series(True, index=text.index)
    for token in tokens:
        mask &= lowered.str.contains(token.lower(), regex=False).fillna(False).astype(bool)
    return mask


def _itemids(dictionary: pd.DataFrame, mask: pd.Series) -> FrozenSet[int]:
    return frozenset(int(i) for i in dictionary.loc[mask, "itemid"].dropna().unique())


def build_lookup_tables(
    procedure_dictionary: pd.DataFrame,
    procedure_code_dictionary: pd.DataFrame,
    lab_dictionary: pd.DataFrame,
    vitals_dictionary: pd.DataFrame,
    vocabulary: Dict,
) -> CriterionLookupTables:
    """Resolve vocabulary tokens into concrete identifier sets.

    Args:
        procedure_dictionary: itemid, order_category_name
        procedure_code_dictionary: icd_code, long_title
        lab_dictionary: itemid, label
        vitals_dictionary: itemid, label
        vocabulary: Parsed criteria.yaml

    Returns:
        CriterionLookupTables
    """
    device_mask = match_any_token(
        procedure_dictionary["order_category_name"], vocabulary["device_category_tokens"]
    )
    anc_mask = match_all_tokens(lab_dictionary["label"], vocabulary["anc_label_tokens"])
    sbp_mask = match_all_tokens(vitals_dictionary["label"], vocabulary["sbp_label_tokens"])

    surgery_mask = match_any_token(
        procedure_code_dictionary["long_title"], vocabulary["surgery_title_tokens"]
    )
    surgical_codes = normalize_icd_codes(procedure_code_dictionary.loc[surgery_mask, "icd_code"])

    reference_codes = frozenset(
        (normalize_icd_code(entry["icd_code"]), int(entry["icd_version"]))
        for entry in vocabulary["diagnosis_reference_codes"]
    )

    evidence = vocabulary["infection_evidence"]

    return CriterionLookupTables(
        device_itemids=_itemids(procedure_dictionary, device_mask),
        anc_itemids=_itemids(lab_dictionary, anc_mask),
        sbp_itemids=_itemids(vitals_dictionary, sbp_mask),
        surgical_icd_codes=frozenset(c for c in surgical_codes if c),
        diagnosis_reference_codes=reference_codes,
        specimen_tokens=tuple(evidence["specimen_tokens"]),
        organism_tokens=tuple(evidence["organism_tokens"]),
    )
