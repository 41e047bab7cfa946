"""
Meta-analysis toolkit for the etiology of rapidly progressive dementia

This toolkit provides:
- Loading and validation of the review's study spreadsheet
- Random-effects meta-analysis of proportions via PyMARE
- Publication bias, influence, outlier and GOSH diagnostics
- Forest, funnel, Baujat, influence and GOSH plots
- Per-category workflows, HTML reports and a command-line interface
"""

__version__ = "0.1.0"
