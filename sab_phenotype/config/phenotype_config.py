"""
SAB Phenotype Configuration
===========================

Central configuration for the S. aureus bacteremia phenotype pipeline.
"""

from pathlib import Path
from dataclasses import dataclass
from typing import Dict, List, Optional
import yaml


# =============================================================================
# PATH CONFIGURATION
# =============================================================================

MODULE_ROOT = Path(__file__).parent.parent
PROJECT_ROOT = MODULE_ROOT.parent

# Exported MIMIC-IV tables (csv, csv.gz or parquet, one file per table)
DATA_DIR = PROJECT_ROOT / "Data" / "mimiciv"

# Output directories
OUTPUT_DIR = MODULE_ROOT / "outputs"

# Config files
CONFIG_DIR = MODULE_ROOT / "config"
CRITERIA_YAML = CONFIG_DIR / "criteria.yaml"


# =============================================================================
# TEMPORAL CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class PhenotypeConfig:
    """Thresholds and windows for episode classification."""

    # Late onset: first positive culture more than this after admission
    early_onset_hours: float = 48.0

    # Surgery timestamps are unavailable; estimated as admission + offset
    surgery_offset_days: int = 1
    surgery_window_days: int = 29   # after the estimated surgery time

    # Invasive instrumentation within +/- this many hours of the culture
    invasive_window_hours: float = 48.0

    # Neutropenia: ANC < 0.5 x 10^9/L on >= 2 calendar days within +/- 3 days
    anc_threshold: float = 0.5
    anc_window_days: int = 3
    anc_min_days: int = 2

    # Sustained hypotension: SBP < 100 lasting >= 60 minutes
    sbp_threshold: float = 100.0
    min_hypotension_minutes: int = 60

    # Hypotension must continue this long after the culture
    min_post_sentinel_minutes: int = 60


DEFAULT_CONFIG = PhenotypeConfig()


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

REQUIRED_VOCABULARY_KEYS = {
    'infection_evidence',
    'device_category_tokens',
    'surgery_title_tokens',
    'anc_label_tokens',
    'sbp_label_tokens',
    'diagnosis_reference_codes',
}

def load_criteria_vocabulary(path: Optional[Path] = None) -> Dict:
    """Load terminology vocabulary from YAML."""
    with open(path or CRITERIA_YAML, 'r') as f:
        vocabulary = yaml.safe_load(f)

    missing = REQUIRED_VOCABULARY_KEYS - set(vocabulary)
    if missing:
        raise ValueError(f"Criteria vocabulary missing keys: {sorted(missing)}")
    return vocabulary


def ensure_directories(dirs: Optional[List[Path]] = None):
    """Create all required output directories."""
    for dir_path in dirs or [OUTPUT_DIR]:
        dir_path.mkdir(parents=True, exist_ok=True)
