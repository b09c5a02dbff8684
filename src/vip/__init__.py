"""
Vulnerability Intelligence Pipeline (VIP)

Ingests NVD vulnerability feeds into canonical vulnerability records with
version-range applicability, and analyzes software components against the
Sonatype OSS Index service, reconciling the results into the same store.
"""

__version__ = "1.0.0"
__author__ = "Vulnerability Intelligence Pipeline Team"
