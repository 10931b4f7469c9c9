"""
SAB Phenotype Configuration Package
"""

from .phenotype_config import (
    # Paths
    MODULE_ROOT,
    PROJECT_ROOT,
    DATA_DIR,
    OUTPUT_DIR,
    CRITERIA_YAML,

    # Configs
    PhenotypeConfig,
    DEFAULT_CONFIG,

    # Helpers
    load_criteria_vocabulary,
    ensure_directories,
)
