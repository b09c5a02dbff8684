"""
Sample NVD feed items and OSS Index component reports
"""
import json
from typing import Dict, Any, List

OSSINDEX_HOST = "https://ossindex.sonatype.org"

CVSS_V2_NETWORK = "AV:N/AC:L/Au:N/C:P/I:P/A:P"
CVSS_V3_CRITICAL = "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H"
CVSS_V3_XSS = "CVSS:3.1/AV:N/AC:L/PR:N/UI:R/S:C/C:L/I:L/A:N"

FLASH_CPE = "cpe:2.3:a:adobe:flash_player:*:*:*:*:*:*:*:*"
WINDOWS_CPE = "cpe:2.3:o:microsoft:windows:-:*:*:*:*:*:*:*"
LINUX_CPE = "cpe:2.3:o:linux:linux_kernel:-:*:*:*:*:*:*:*"
STRUTS_CPE = "cpe:2.3:a:apache:struts:*:*:*:*:*:*:*:*"


def cpe_match(cpe23: str, vulnerable: bool = True, **bounds) -> Dict[str, Any]:
    match = {"vulnerable": vulnerable, "cpe23Uri": cpe23}
    match.update(bounds)
    return match


def nvd_item(cve_id: str, nodes: List[Dict[str, Any]] = None, impact: Dict[str, Any] = None,
             cwes: List[str] = None, urls: List[str] = None,
             published: str = "2021-01-01T05:15Z", modified: str = "2021-02-03T10:00Z") -> Dict[str, Any]:
    return {
        "cve": {
            "data_type": "CVE",
            "CVE_data_meta": {"ID": cve_id, "ASSIGNER": "cve@mitre.org"},
            "problemtype": {"problemtype_data": [
                {"description": [{"lang": "en", "value": cwe} for cwe in (cwes or [])]}
            ]},
            "references": {"reference_data": [{"url": url, "name": url} for url in (urls or [])]},
            "description": {"description_data": [
                {"lang": "en", "value": f"Description of {cve_id}."},
                {"lang": "es", "value": f"Descripcion de {cve_id}."},
            ]},
        },
        "configurations": {"CVE_data_version": "4.0", "nodes": nodes or []},
        "impact": impact or {},
        "publishedDate": published,
        "lastModifiedDate": modified,
    }


FLASH_ITEM = nvd_item(
    "CVE-2021-0001",
    nodes=[{
        "operator": "AND",
        "children": [
            {"operator": "OR", "cpe_match": [cpe_match(FLASH_CPE, versionEndExcluding="32.0.0.465")]},
            {"operator": "OR", "cpe_match": [cpe_match(WINDOWS_CPE), cpe_match(LINUX_CPE)]},
        ],
    }],
    impact={
        "baseMetricV3": {
            "cvssV3": {"version": "3.1", "vectorString": CVSS_V3_CRITICAL, "baseScore": 9.8},
            "exploitabilityScore": 3.9,
            "impactScore": 5.9,
        },
        "baseMetricV2": {
            "cvssV2": {"version": "2.0", "vectorString": CVSS_V2_NETWORK, "baseScore": 7.5},
            "exploitabilityScore": 10.0,
            "impactScore": 6.4,
        },
    },
    cwes=["CWE-79", "NVD-CWE-Other"],
    urls=["https://example.com/advisory", "https://example.com/patch"],
)

STRUTS_ITEM = nvd_item(
    "CVE-2021-0002",
    nodes=[{
        "operator": "OR",
        "cpe_match": [
            cpe_match(STRUTS_CPE, versionStartIncluding="2.0.0", versionEndIncluding="2.5.25"),
            cpe_match(STRUTS_CPE, versionStartIncluding="2.0.0", versionEndIncluding="2.5.25"),
            cpe_match("cpe:2.3:a:apache:tomcat:*:*:*:*:*:*:*:*", vulnerable=False),
        ],
    }],
)

MISSING_ID_ITEM = {"cve": {"CVE_data_meta": {}}, "configurations": {"nodes": []}}


def nvd_feed(items: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "CVE_data_type": "CVE",
        "CVE_data_format": "MITRE",
        "CVE_data_version": "4.0",
        "CVE_data_numberOfCVEs": str(len(items)),
        "CVE_Items": items,
    }


def nvd_feed_bytes(items: List[Dict[str, Any]]) -> bytes:
    return json.dumps(nvd_feed(items)).encode("utf-8")


SAMPLE_FEED_ITEMS = [FLASH_ITEM, STRUTS_ITEM, MISSING_ID_ITEM]


def report_vulnerability(vuln_id: str, cve: str = None, title: str = None,
                         cwe: str = None, vector: str = None, score: float = None) -> Dict[str, Any]:
    entry = {
        "id": vuln_id,
        "displayName": cve or vuln_id,
        "title": title or f"[{cve or vuln_id}] Sample vulnerability",
        "description": f"Description of {cve or vuln_id}",
        "reference": f"https://ossindex.sonatype.org/vulnerability/{vuln_id}",
        "externalReferences": [f"https://example.com/{vuln_id}"],
    }
    if cve:
        entry["cve"] = cve
    if cwe:
        entry["cwe"] = cwe
    if vector:
        entry["cvssVector"] = vector
    if score is not None:
        entry["cvssScore"] = score
    return entry


def component_report(coordinates: str, vulnerabilities: List[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "coordinates": coordinates,
        "description": "",
        "reference": f"https://ossindex.sonatype.org/component/{coordinates}",
        "vulnerabilities": vulnerabilities or [],
    }


MINIMIST_VULN = report_vulnerability(
    "sonatype-2021-4411", cve="CVE-2021-44906", cwe="CWE-1321", vector=CVSS_V3_CRITICAL, score=9.8)
AXIOS_VULN = report_vulnerability(
    "sonatype-2020-1234", title="Server-Side Request Forgery", cwe="CWE-918", vector=CVSS_V2_NETWORK, score=7.5)


COMPONENTS = [
    {"uuid": "c-lodash", "purl": "pkg:npm/lodash@4.17.20", "project_uuid": "project-a"},
    {"uuid": "c-minimist", "purl": "pkg:npm/minimist@1.2.0?arch=x64", "project_uuid": "project-a"},
    {"uuid": "c-axios", "purl": "pkg:npm/axios@v0.21.0", "project_uuid": "project-a"},
]
