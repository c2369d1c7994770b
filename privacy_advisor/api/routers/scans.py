"""
Scan submission and status endpoints.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Request, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from privacy_advisor.api.errors.exceptions import NotFoundException, QuotaExceededException, ValidationException
from privacy_advisor.services.errors import BrokerError
from privacy_advisor.services.job_broker import enqueue_scan
from privacy_advisor.services.url_normalizer import normalize_url

router = APIRouter()
logger = logging.getLogger(__name__)


class CreateScanRequest(BaseModel):
    """Request model for submitting a scan."""
    url: str = Field(..., description="Target URL or bare host")
    force: bool = Field(default=False, description="Rescan even if a recent result exists")
    batch: bool = Field(default=False, description="Part of a batch submission")


class CreateScanResponse(BaseModel):
    """Response model for scan creation."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    scan_id: str
    job_id: str


class ScanStatusResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    scan_id: str
    status: str
    score: Optional[int] = None
    label: Optional[str] = None
    summary: Optional[str] = None


def quota_identifier(request: Request) -> str:
    """User id set by upstream auth, else the client IP."""
    user_id = getattr(request.state, 'user_id', None)
    if user_id:
        return str(user_id)
    return request.client.host if request.client else 'unknown'


def is_privileged(request: Request) -> bool:
    """Callers exempt from the daily quota."""
    if getattr(request.state, 'is_privileged', False):
        return True
    admin_key = request.app.state.config.api.admin_api_key
    presented = request.headers.get('X-Admin-Key')
    return bool(admin_key and presented and hmac.compare_digest(admin_key, presented))


@router.post(
    "/scan",
    response_model=CreateScanResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit a scan"
)
async def create_scan(payload: CreateScanRequest, request: Request):
    """
    Queue a scan of the given URL.

    Unprivileged callers consume one scan of their daily quota; the quota
    check and increment happen atomically, and the scan is given back if
    the job cannot be queued.
    """
    try:
        normalized = normalize_url(payload.url)
    except ValueError as e:
        raise ValidationException(str(e), details={"field": "url"})

    config = request.app.state.config
    quota = request.app.state.quota_service
    identifier = None

    if not is_privileged(request):
        identifier = quota_identifier(request)
        info = await quota.try_consume(identifier)
        if not info.allowed:
            raise QuotaExceededException(info, quota.daily_limit, config.quota.upgrade_url)

    repository = request.app.state.scan_repository
    scan = await repository.create_scan(payload.url, normalized_input=normalized)

    try:
        job = enqueue_scan(
            request.app.state.broker,
            scan_id=scan.id,
            url=normalized,
            normalized_input=normalized,
            request_id=getattr(request.state, 'request_id', None),
            attempts=config.queue.attempts,
            backoff_ms=config.queue.backoff_ms,
            queue=config.queue.name,
        )
    except BrokerError as e:
        logger.error(f"Scan {scan.id} could not be queued: {e}")
        await repository.update_scan(scan.id, status='failed')
        if identifier is not None:
            await quota.release(identifier)
        raise

    logger.info(f"Scan {scan.id} queued as job {job.id}")
    return CreateScanResponse(scan_id=scan.id, job_id=job.id)


@router.get(
    "/scan/{scan_id}",
    response_model=ScanStatusResponse,
    summary="Scan status"
)
async def get_scan_status(scan_id: str, request: Request):
    scan = await request.app.state.scan_repository.get_scan(scan_id)
    if scan is None:
        raise NotFoundException("Scan", scan_id)
    return ScanStatusResponse(
        scan_id=scan.id,
        status=scan.status,
        score=scan.score,
        label=scan.label,
        summary=scan.summary,
    )
