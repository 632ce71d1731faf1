"""
Utility modules for the settlement backend.

This package contains shared helpers used across the application,
including datetime and spreadsheet-cell parsing and name normalization.
"""
