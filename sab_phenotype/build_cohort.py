"""Main pipeline for building the SAB hypotension cohort."""
from pathlib import Path
from typing import Dict, Optional, Union
import json
import logging

import pandas as pd

from sab_phenotype.config.phenotype_config import (
    DEFAULT_CONFIG,
    PhenotypeConfig,
    ensure_directories,
    load_criteria_vocabulary,
)
from sab_phenotype.extractors.table_loader import load_source_tables
from sab_phenotype.processing.cohort_builder import build_cohort
from sab_phenotype.processing.concordance import build_concordance_report

COHORT_FILENAME = "sab_cohort"
CONCORDANCE_FILENAME = "concordance_report.json"


def save_cohort(cohort: pd.DataFrame, output_path: Path) -> Dict[str, Path]:
    """Write the cohort as parquet and csv.

    Args:
        cohort: Final cohort rows
        output_path: Output directory

    Returns:
        Dict mapping format to written path
    """
    ensure_directories([output_path])
    paths = {
        "parquet": output_path / f"{COHORT_FILENAME}.parquet",
        "csv": output_path / f"{COHORT_FILENAME}.csv",
    }
    cohort.to_parquet(paths["parquet"], index=False)
    cohort.to_csv(paths["csv"], index=False)
    return paths


def run_pipeline(
    data_dir: Union[str, Path],
    output_path: Union[str, Path],
    config: PhenotypeConfig = DEFAULT_CONFIG,
    criteria_path: Optional[Path] = None,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """Run the full SAB phenotype pipeline.

    Args:
        data_dir: Directory with the exported MIMIC-IV tables
        output_path: Output directory
        config: Phenotype thresholds
        criteria_path: Terminology vocabulary YAML (default: config/criteria.yaml)
        n_jobs: Worker processes for cohort building

    Returns:
        Final cohort DataFrame
    """
    data_dir = Path(data_dir)
    output_path = Path(output_path)

    print(f"Loading source tables from {data_dir}...")
    vocabulary = load_criteria_vocabulary(criteria_path)
    tables, lookups = load_source_tables(data_dir, vocabulary)
    print(f"  {len(tables.admissions):,} admissions, {len(tables.microbiology):,} microbiology events")
    print(f"  {len(lookups.device_itemids)} device items, {len(lookups.sbp_itemids)} SBP items, "
          f"{len(lookups.anc_itemids)} ANC items")

    print("Building cohort...")
    cohort = build_cohort(tables, lookups, config, n_jobs=n_jobs)
    counts = cohort["acquisition_type"].value_counts()
    print(f"  Cohort: {len(cohort):,} episodes")
    for acquisition_type, n in counts.items():
        print(f"    {acquisition_type}: {n:,}")

    paths = save_cohort(cohort, output_path)
    print(f"  Saved to {paths['parquet']}")

    print("Building concordance report...")
    report = build_concordance_report(
        cohort, tables.diagnosis_codes, lookups.diagnosis_reference_codes
    )
    report_path = output_path / CONCORDANCE_FILENAME
    with open(report_path, "w") as f:
        json.dump(report, f, indent=2)
    print(f"  Sensitivity vs diagnosis codes: {report['sensitivity']}")
    print(f"  Saved to {report_path}")

    print("Pipeline complete!")
    return cohort


def main():
    """Main entry point for CLI."""
    import argparse
    from sab_phenotype.config.phenotype_config import CRITERIA_YAML, DATA_DIR, OUTPUT_DIR

    parser = argparse.ArgumentParser(description="Build the S. aureus bacteremia hypotension cohort")
    parser.add_argument("--data-dir", type=Path, default=DATA_DIR, help="Directory with MIMIC-IV table exports")
    parser.add_argument("--output-dir", type=Path, default=OUTPUT_DIR, help="Output directory")
    parser.add_argument("--criteria", type=Path, default=CRITERIA_YAML, help="Terminology vocabulary YAML")
    parser.add_argument("--n-jobs", type=int, default=1, help="Worker processes (default: 1)")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    run_pipeline(
        data_dir=args.data_dir,
        output_path=args.output_dir,
        criteria_path=args.criteria,
        n_jobs=args.n_jobs,
    )


if __name__ == "__main__":
    main()
