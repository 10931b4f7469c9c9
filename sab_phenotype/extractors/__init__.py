"""
Source Table Extractors
"""
