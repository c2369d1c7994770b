"""
Scan record, evidence and issue storage.

The relational store lives outside this package; the API and workers reach
it only through ScanRepository.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import uuid4

from privacy_advisor.models.report import Evidence, Issue, ScanRecord
from privacy_advisor.services.errors import ScanNotFoundError


class ScanRepository(ABC):
    """Storage interface for scans and their findings."""

    @abstractmethod
    async def create_scan(self, input: str, normalized_input: Optional[str] = None) -> ScanRecord:
        """Create a queued scan record."""

    @abstractmethod
    async def get_scan(self, scan_id: str) -> Optional[ScanRecord]:
        """Return the scan, or None if unknown."""

    @abstractmethod
    async def update_scan(self, scan_id: str, **fields) -> ScanRecord:
        """Update fields of a scan record (status, score, label, summary, ...)."""

    @abstractmethod
    async def add_evidence(self, evidence: List[Evidence]) -> None:
        """Append evidence rows."""

    @abstractmethod
    async def replace_issues(self, scan_id: str, issues: List[Issue]) -> None:
        """Replace the curated issues of a scan."""

    @abstractmethod
    async def list_evidence(self, scan_id: str) -> List[Evidence]:
        """Evidence of a scan in insertion order."""

    @abstractmethod
    async def list_issues(self, scan_id: str) -> List[Issue]:
        """Issues of a scan in insertion order."""


class InMemoryScanRepository(ScanRepository):
    """Process-local repository used by tests and local runs."""

    def __init__(self):
        self._scans: Dict[str, ScanRecord] = {}
        self._evidence: Dict[str, List[Evidence]] = {}
        self._issues: Dict[str, List[Issue]] = {}
        self._lock = asyncio.Lock()

    async def create_scan(self, input: str, normalized_input: Optional[str] = None) -> ScanRecord:
        scan = ScanRecord(
            id=str(uuid4()),
            input=input,
            normalized_input=normalized_input,
            status='queued',
            created_at=datetime.now(timezone.utc),
        )
        async with self._lock:
            self._scans[scan.id] = scan
        return scan

    async def get_scan(self, scan_id: str) -> Optional[ScanRecord]:
        return self._scans.get(scan_id)

    async def update_scan(self, scan_id: str, **fields) -> ScanRecord:
        async with self._lock:
            if scan_id not in self._scans:
                raise ScanNotFoundError(scan_id)
            scan = self._scans[scan_id].model_copy(update=fields)
            self._scans[scan_id] = scan
        return scan

    async def add_evidence(self, evidence: List[Evidence]) -> None:
        async with self._lock:
            for entry in evidence:
                self._evidence.setdefault(entry.scan_id, []).append(entry)

    async def replace_issues(self, scan_id: str, issues: List[Issue]) -> None:
        async with self._lock:
            self._issues[scan_id] = list(issues)

    async def list_evidence(self, scan_id: str) -> List[Evidence]:
        return list(self._evidence.get(scan_id, []))

    async def list_issues(self, scan_id: str) -> List[Issue]:
        return list(self._issues.get(scan_id, []))


async def finalize_scan(repository: ScanRepository, scan_id: str, calculator=None):
    """
    Score a scan from its stored evidence and persist score, label, summary
    and issues. Called by scan executors once evidence is written.

    Returns:
        The score result
    """
    from privacy_advisor.analytics.score_calculator import ScoreCalculator

    scan = await repository.get_scan(scan_id)
    if scan is None:
        raise ScanNotFoundError(scan_id)

    calculator = calculator or ScoreCalculator()
    result = calculator.compute(scan, await repository.list_evidence(scan_id))
    await repository.replace_issues(scan_id, result.issues)
    await repository.update_scan(
        scan_id,
        status='done',
        score=result.score,
        label=result.label.value,
        summary=result.summary,
        finished_at=datetime.now(timezone.utc),
    )
    return result
