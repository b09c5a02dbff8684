"""
Validation utilities for Vulnerability Intelligence Pipeline
"""
import os
import re
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

_CWE_PATTERN = re.compile(r'^(?:CWE-)?(\d+)(?:\s.*)?$', re.IGNORECASE | re.DOTALL)


def is_cve_id(value: Optional[str]) -> bool:
    """
    Check for a CVE-style identifier

    Only the prefix is checked; upstream data sometimes places other ids in
    the CVE field.
    """
    return isinstance(value, str) and value.startswith('CVE-')


def parse_cwe_id(cwe_id: Optional[str]) -> Optional[int]:
    """
    Extract the numeric part of a CWE reference

    Args:
        cwe_id: "CWE-79", "79" or "CWE-79 Some Name"

    Returns:
        int: the CWE number, or None when the format is not recognised
    """
    if cwe_id is None:
        return None
    match = _CWE_PATTERN.match(str(cwe_id).strip())
    if not match:
        return None
    return int(match.group(1))


def validate_cwe_id(cwe_id: str) -> bool:
    """
    Validate CWE ID format

    Returns:
        bool: True if valid format
    """
    return parse_cwe_id(cwe_id) is not None


def validate_component_data(data: Dict[str, Any]) -> bool:
    """
    Validate a component record read from an analysis input file

    Returns:
        bool: True if the record has the fields the analyzer needs
    """
    if not isinstance(data, dict):
        logger.error("Component data must be a dictionary")
        return False

    if not data.get('uuid'):
        logger.error(f"Component is missing uuid: {data}")
        return False

    if not (data.get('purl') or data.get('cpe')):
        logger.warning(f"Component {data.get('uuid')} has neither purl nor cpe")

    return True


def validate_file_exists(file_path: str) -> bool:
    """
    Validate that a file exists and is readable

    Returns:
        bool: True if file exists and is readable
    """
    if not os.path.exists(file_path):
        logger.error(f"File does not exist: {file_path}")
        return False

    if not os.access(file_path, os.R_OK):
        logger.error(f"File is not readable: {file_path}")
        return False

    return True
