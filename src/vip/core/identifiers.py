"""
Package and platform coordinate normalization
"""
import logging
from typing import Optional, Union

from packageurl import PackageURL

from vip.core.models import PlatformCoordinate
from vip.utils.error_handler import MalformedIdentifierError

logger = logging.getLogger(__name__)

PURL_SCHEME = "pkg:"


def parse_purl(coordinate: str) -> PackageURL:
    """
    Parse a package URL string

    Raises:
        MalformedIdentifierError: when the string is not a valid package URL
    """
    try:
        return PackageURL.from_string(coordinate)
    except ValueError as e:
        raise MalformedIdentifierError(f"Invalid package URL {coordinate}: {e}", identifier=coordinate) from e


def canonicalize(identifier: Union[PackageURL, PlatformCoordinate, str]) -> str:
    """Canonical string for either coordinate scheme"""
    if isinstance(identifier, (PackageURL, PlatformCoordinate)):
        return identifier.to_string()
    if identifier.startswith("cpe:"):
        return PlatformCoordinate.from_string(identifier).to_string()
    return parse_purl(identifier).to_string()


def minimize_purl(purl: Union[PackageURL, str, None]) -> Optional[str]:
    """
    Reduce a package URL to the form the OSS Index service resolves correctly

    Versions prefixed with ``v`` lose the prefix, and qualifiers and subpath
    are dropped. Returns None for None.
    """
    if purl is None:
        return None
    p = purl.to_string() if isinstance(purl, PackageURL) else canonicalize(purl)
    p = p.replace("@v", "@", 1)
    if "?" in p:
        p = p[:p.index("?")]
    if "#" in p:
        p = p[:p.index("#")]
    return p


def upgrade_legacy_coordinate(coordinate: str) -> str:
    """
    Convert an old-style ``type:namespace:name:version`` coordinate to package URL form

    ``maven:org.acme:foo:1.0`` becomes ``pkg:maven/org.acme:foo:1.0``; coordinates
    already using the ``pkg:`` scheme are returned unchanged.
    """
    if coordinate.startswith(PURL_SCHEME):
        return coordinate
    return PURL_SCHEME + coordinate.replace(":", "/", 1)


def coordinates_match(minimized_component_purl: Optional[str], reported_coordinate: Optional[str]) -> bool:
    """
    Match a reported coordinate to a component's minimized package URL

    Exact equality first, then equality after upgrading and minimizing the
    reported coordinate. Unparseable reported coordinates never match.
    """
    if not minimized_component_purl or not reported_coordinate:
        return False
    if minimized_component_purl == reported_coordinate:
        return True
    try:
        upgraded = minimize_purl(parse_purl(upgrade_legacy_coordinate(reported_coordinate)))
    except MalformedIdentifierError as e:
        logger.debug(f"Reported coordinate discarded: {e}")
        return False
    return minimized_component_purl == upgraded
