"""S. aureus bacteremia hypotension phenotype for MIMIC-IV."""
