"""End-to-end test: MIMIC-IV style exports to cohort files."""
import json

import pandas as pd
import pytest
from sab_phenotype.build_cohort import run_pipeline


def write_csv(path, rows):
    pd.DataFrame(rows).to_csv(path, index=False)


@pytest.fixture
def mimic_dir(tmp_path):
    """A tiny MIMIC-IV export with one linked hospital and one community episode."""
    data_dir = tmp_path / "mimiciv"
    data_dir.mkdir()
    write_csv(data_dir / "admissions.csv", {
        "subject_id": [1, 2],
        "hadm_id": [10, 20],
        "admittime": ["2023-06-01 08:00:00", "2023-06-01 08:00:00"],
        "dischtime": ["2023-06-20 08:00:00", "2023-06-20 08:00:00"],
        "admission_type": ["EW EMER.", "URGENT"],
    })
    write_csv(data_dir / "microbiologyevents.csv", {
        "microevent_id": [101, 102, 103],
        "subject_id": [1, 2, 2],
        "hadm_id": [10, 20, 20],
        "charttime": ["2023-06-02 08:00:00", "2023-06-01 20:00:00", "2023-06-01 21:00:00"],
        "spec_type_desc": ["BLOOD CULTURE", "BLOOD CULTURE", "BLOOD CULTURE"],
        "org_name": ["STAPH AUREUS COAG +", "STAPH AUREUS COAG +", "STAPH AUREUS COAG +"],
    })
    write_csv(data_dir / "procedureevents.csv", {
        "subject_id": [1],
        "hadm_id": [10],
        "itemid": [225752],
        "starttime": ["2023-06-01 10:00:00"],
        "endtime": ["2023-06-05 10:00:00"],
        "ordercategoryname": ["Invasive Lines"],
    })
    write_csv(data_dir / "d_items.csv", {
        "itemid": [225752, 220050, 220051],
        "label": ["Arterial Line", "Arterial Blood Pressure systolic", "Arterial Blood Pressure diastolic"],
    })
    write_csv(data_dir / "procedures_icd.csv", {
        "subject_id": [2], "hadm_id": [20], "icd_code": ["0210093"], "icd_version": [10],
    })
    write_csv(data_dir / "d_icd_procedures.csv", {
        "icd_code": ["0210093"], "icd_version": [10], "long_title": ["Bypass Coronary Artery"],
    })
    write_csv(data_dir / "labevents.csv", {
        "subject_id": [2], "hadm_id": [None], "itemid": [52075],
        "charttime": ["2023-06-01 10:00:00"], "valuenum": [3.1],
    })
    write_csv(data_dir / "d_labitems.csv", {
        "itemid": [52075], "label": ["Absolute Neutrophil Count"],
    })
    write_csv(data_dir / "chartevents.csv", {
        "subject_id": [1, 1, 1],
        "hadm_id": [10, 10, 10],
        "itemid": [220050, 220050, 220051],
        "charttime": ["2023-06-02 07:00:00", "2023-06-02 09:20:00", "2023-06-02 07:00:00"],
        "valuenum": [82, 118, 40],
    })
    write_csv(data_dir / "diagnoses_icd.csv", {
        "subject_id": [1, 2], "hadm_id": [10, 20], "icd_code": ["B956", "I10"], "icd_version": [10, 10],
    })
    return data_dir


class TestRunPipeline:
    """Tests for the full pipeline."""

    def test_writes_outputs(self, mimic_dir, tmp_path):
        """Cohort and concordance files are written."""
        output_dir = tmp_path / "outputs"
        run_pipeline(mimic_dir, output_dir)
        assert (output_dir / "sab_cohort.parquet").exists()
        assert (output_dir / "sab_cohort.csv").exists()
        report = json.loads((output_dir / "concordance_report.json").read_text())
        assert report["n_episodes"] == 2
        assert report["sensitivity"] == 1.0

    def test_cohort_contents(self, mimic_dir, tmp_path):
        """Device-linked hospital episode and community episode are found."""
        cohort = run_pipeline(mimic_dir, tmp_path / "outputs")
        assert cohort["acquisition_type"].tolist() == ["Hospital-Acquired", "Community-Acquired"]

        hospital = cohort.iloc[0]
        assert hospital["presence_of_device"] == "Yes"
        assert hospital["hypotension_duration_minutes"] == 140
        assert bool(hospital["has_relevant_diagnosis_code"]) is True

        community = cohort.iloc[1]
        assert community["sab_time"] == pd.Timestamp("2023-06-01 20:00")
        assert pd.isna(community["hypotension_start"])

    def test_parquet_round_trip(self, mimic_dir, tmp_path):
        """The saved parquet matches the returned cohort."""
        output_dir = tmp_path / "outputs"
        cohort = run_pipeline(mimic_dir, output_dir)
        saved = pd.read_parquet(output_dir / "sab_cohort.parquet")
        assert saved["subject_id"].tolist() == cohort["subject_id"].tolist()

    def test_missing_table_raises(self, mimic_dir, tmp_path):
        """A missing export is reported, not silently skipped."""
        (mimic_dir / "chartevents.csv").unlink()
        with pytest.raises(FileNotFoundError, match="chartevents"):
            run_pipeline(mimic_dir, tmp_path / "outputs")
