"""Shared fixtures for SAB phenotype tests."""
import pandas as pd
import pytest
from sab_phenotype.processing.lookup_tables import CriterionLookupTables

DEVICE_ITEMID = 225752
ANC_ITEMID = 52075
SBP_ITEMID = 220050
SURGICAL_CODE = "0210093"


@pytest.fixture
def lookups():
    """Lookup tables with one identifier per criterion."""
    return CriterionLookupTables(
        device_itemids=frozenset({DEVICE_ITEMID}),
        anc_itemids=frozenset({ANC_ITEMID}),
        sbp_itemids=frozenset({SBP_ITEMID}),
        surgical_icd_codes=frozenset({SURGICAL_CODE}),
        diagnosis_reference_codes=frozenset({("A410", 10), ("B956", 10)}),
    )


@pytest.fixture
def admissions():
    """Two admissions for subject 1 and one for subject 2."""
    return pd.DataFrame({
        "subject_id": [1, 1, 2],
        "hadm_id": [10, 11, 20],
        "admittime": pd.to_datetime(["2023-06-01 08:00", "2023-07-01 08:00", "2023-06-01 08:00"]),
        "dischtime": pd.to_datetime(["2023-06-20 08:00", "2023-07-10 08:00", "2023-06-20 08:00"]),
    })


def _frame(columns, rows, datetimes=()):
    df = pd.DataFrame(rows, columns=columns)
    for col in datetimes:
        df[col] = pd.to_datetime(df[col])
    return df


@pytest.fixture
def source_tables():
    """Four encounters covering each cohort outcome.

    - subject 1: late onset, hypotension at the culture (hospital, linked)
    - subject 2: early onset, no criterion (community)
    - subject 3: early onset, device, no hypotension (hospital, not linked)
    - subject 4: early onset, device, hypotension at the culture (hospital, linked)
    """
    from sab_phenotype.extractors.table_loader import SourceTables

    admissions = _frame(
        ["subject_id", "hadm_id", "admittime", "dischtime"],
        [(s, s * 10, "2023-06-01 08:00", "2023-06-20 08:00") for s in (1, 2, 3, 4)],
        datetimes=["admittime", "dischtime"],
    )
    microbiology = _frame(
        ["subject_id", "hadm_id", "charttime", "specimen_type_description", "organism_name"],
        [
            (1, 10, "2023-06-03 10:00", "BLOOD CULTURE", "STAPH AUREUS COAG +"),
            (1, 10, "2023-06-04 10:00", "BLOOD CULTURE", "STAPH AUREUS COAG +"),
            (2, 20, "2023-06-01 20:00", "BLOOD CULTURE", "STAPH AUREUS COAG +"),
            (3, 30, "2023-06-02 08:00", "BLOOD CULTURE", "STAPH AUREUS COAG +"),
            (4, 40, "2023-06-02 08:00", "BLOOD CULTURE", "STAPH AUREUS COAG +"),
            (4, 40, "2023-06-02 08:00", "URINE", "ESCHERICHIA COLI"),
        ],
        datetimes=["charttime"],
    )
    procedure_events = _frame(
        ["subject_id", "hadm_id", "itemid", "starttime", "endtime"],
        [
            (3, 30, DEVICE_ITEMID, "2023-06-01 10:00", "2023-06-05 10:00"),
            (4, 40, DEVICE_ITEMID, "2023-06-01 10:00", "2023-06-05 10:00"),
        ],
        datetimes=["starttime", "endtime"],
    )
    chart_events = _frame(
        ["subject_id", "hadm_id", "itemid", "charttime", "value"],
        [
            (1, 10, SBP_ITEMID, "2023-06-03 09:30", 85.0),
            (1, 10, SBP_ITEMID, "2023-06-03 11:30", 110.0),
            (4, 40, SBP_ITEMID, "2023-06-02 07:00", 88.0),
            (4, 40, SBP_ITEMID, "2023-06-02 09:30", 105.0),
        ],
        datetimes=["charttime"],
    )
    lab_events = _frame(
        ["subject_id", "hadm_id", "itemid", "charttime", "value"],
        [(2, None, ANC_ITEMID, "2023-06-01 10:00", 2.5)],
        datetimes=["charttime"],
    )
    diagnosis_procedures = _frame(
        ["subject_id", "hadm_id", "icd_code"],
        [(2, 20, "5A1935Z")],
    )
    diagnosis_codes = _frame(
        ["subject_id", "hadm_id", "icd_code", "icd_version"],
        [(2, 20, "A410", 10), (4, 40, "I10", 10)],
    )
    return SourceTables(
        admissions=admissions,
        microbiology=microbiology,
        procedure_events=procedure_events,
        procedure_dictionary=pd.DataFrame({
            "itemid": [DEVICE_ITEMID], "order_category_name": ["Invasive Lines"],
        }),
        diagnosis_procedures=diagnosis_procedures,
        procedure_code_dictionary=pd.DataFrame({
            "icd_code": [SURGICAL_CODE], "long_title": ["Bypass, surgery"],
        }),
        lab_events=lab_events,
        lab_dictionary=pd.DataFrame({"itemid": [ANC_ITEMID], "label": ["Absolute Neutrophil Count"]}),
        chart_events=chart_events,
        vitals_dictionary=pd.DataFrame({"itemid": [SBP_ITEMID], "label": ["Arterial Blood Pressure systolic"]}),
        diagnosis_codes=diagnosis_codes,
    )
