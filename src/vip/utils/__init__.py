"""
Utility components for the Vulnerability Intelligence Pipeline.

This module contains:
- Configuration management
- Error handling
- Retry with exponential backoff
- Validation
"""
