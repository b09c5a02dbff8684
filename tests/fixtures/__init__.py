"""
Shared test data for the Vulnerability Intelligence Pipeline test suite
"""
