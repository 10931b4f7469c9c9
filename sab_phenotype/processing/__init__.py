"""
SAB Phenotype Processing Package
"""
