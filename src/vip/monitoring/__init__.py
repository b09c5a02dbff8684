"""
Monitoring components for the Vulnerability Intelligence Pipeline.

This module contains:
- In-process metrics registry
"""
