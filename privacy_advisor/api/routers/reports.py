"""
Report endpoints.
"""

import logging

from fastapi import APIRouter, Request

from privacy_advisor.analytics.report_generator import build_report_payload
from privacy_advisor.api.errors.exceptions import NotFoundException

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "/reports/{scan_id}",
    summary="Scan report",
    description="Scan record, evidence, issues, top fixes and data sharing summary"
)
async def get_report(scan_id: str, request: Request):
    """
    Build the report for a scan.

    The payload is computed from the stored evidence and issues on every
    request.
    """
    repository = request.app.state.scan_repository
    scan = await repository.get_scan(scan_id)
    if scan is None:
        raise NotFoundException("Scan", scan_id)

    evidence = await repository.list_evidence(scan_id)
    issues = await repository.list_issues(scan_id)
    return build_report_payload(scan, evidence, issues).to_response()
