"""
Report payload generator.

Builds the report for a scan from its stored evidence and issues:
- Top fixes (up to three highest-priority issues)
- Data sharing level from tracker, third-party and cookie evidence
- Registrable domain of the scanned target

The payload is a pure function of its inputs and is rebuilt per request.
"""

import logging
from typing import Iterable, List, Set
from urllib.parse import urlsplit

from privacy_advisor.models.report import (
    DataSharingLevel,
    Evidence,
    Issue,
    ReportIssue,
    ReportMeta,
    ReportPayload,
    ReportTopFix,
    ScanRecord,
    SEVERITY_RANK,
)
from privacy_advisor.services.first_party import registrable_domain

logger = logging.getLogger(__name__)

MAX_TOP_FIXES = 3
TOP_FIX_MIN_RANK = SEVERITY_RANK['medium']


def select_top_fixes(issues: Iterable[Issue], limit: int = MAX_TOP_FIXES) -> List[Issue]:
    """
    Highest-priority issues of at least medium severity.

    Sorted by severity descending, then sort weight ascending (missing
    weight counts as 0); ties keep their input order.
    """
    candidates = [issue for issue in issues if issue.rank >= TOP_FIX_MIN_RANK]
    candidates.sort(key=lambda issue: (-issue.rank, issue.sort_weight or 0))
    return candidates[:limit]


def _distinct_domains(evidence: Iterable[Evidence], kind: str) -> Set[str]:
    domains = set()
    for entry in evidence:
        if entry.kind != kind or not isinstance(entry.details, dict):
            continue
        domain = entry.details.get('domain')
        if isinstance(domain, str) and domain:
            domains.add(domain)
    return domains


def data_sharing_index(evidence: List[Evidence]) -> int:
    """2 x distinct tracker domains + distinct third-party domains + cookie evidence."""
    trackers = _distinct_domains(evidence, 'tracker')
    third_parties = _distinct_domains(evidence, 'thirdparty')
    cookies = sum(1 for entry in evidence if entry.kind == 'cookie')
    return 2 * len(trackers) + len(third_parties) + cookies


def data_sharing_level(index: int) -> DataSharingLevel:
    if index > 8:
        return DataSharingLevel.HIGH
    if index > 3:
        return DataSharingLevel.MEDIUM
    if index > 0:
        return DataSharingLevel.LOW
    return DataSharingLevel.NONE


def report_domain(scan_input: str) -> str:
    """Registrable domain of an absolute URL, or the input unchanged."""
    try:
        parts = urlsplit(scan_input)
        hostname = parts.hostname
    except ValueError:
        return scan_input
    if not parts.scheme or not hostname:
        return scan_input
    return registrable_domain(hostname) or hostname


def _report_issue(issue: Issue) -> ReportIssue:
    return ReportIssue(
        id=issue.id,
        key=issue.key or issue.id,
        category=issue.category,
        severity=issue.severity,
        title=issue.title,
        summary=issue.summary,
        how_to_fix=issue.how_to_fix,
        why_it_matters=issue.why_it_matters,
        references=list(issue.references),
        sort_weight=issue.sort_weight,
    )


def _top_fix(issue: Issue) -> ReportTopFix:
    return ReportTopFix(
        id=issue.id,
        key=issue.key or issue.id,
        title=issue.title,
        category=issue.category,
        severity=issue.severity,
        why_it_matters=issue.why_it_matters,
        how_to_fix=issue.how_to_fix,
        references=list(issue.references),
    )


def build_report_payload(
    scan: ScanRecord,
    evidence: List[Evidence],
    issues: List[Issue]
) -> ReportPayload:
    """
    Build the report payload for a scan.

    Args:
        scan: Scan record
        evidence: Evidence rows for the scan
        issues: Curated issues for the scan

    Returns:
        Report payload; inputs are not modified
    """
    evidence = list(evidence)
    index = data_sharing_index(evidence)

    payload = ReportPayload(
        scan=scan,
        issues=[_report_issue(issue) for issue in issues],
        evidence=evidence,
        top_fixes=[_top_fix(issue) for issue in select_top_fixes(issues)],
        meta=ReportMeta(
            data_sharing=data_sharing_level(index),
            domain=report_domain(scan.input),
        ),
    )

    logger.debug(
        f"Report built for scan {scan.id}: {len(issues)} issues, "
        f"{len(payload.top_fixes)} top fixes, data sharing {payload.meta.data_sharing.value}"
    )
    return payload
