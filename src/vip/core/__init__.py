"""
Core functionality for the Vulnerability Intelligence Pipeline.

This module contains the main processing components:
- NVD feed parsing and applicability reconciliation
- OSS Index component analysis
- Analysis cache and result merging
"""
