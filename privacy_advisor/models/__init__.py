"""
Data models for jobs, reports, quotas and tracker lists.
"""

from .job import (
    BackoffPolicy,
    BackoffType,
    Job,
    JobOptions,
    JobStatus,
    QueueMetrics,
    RetryDecision,
)
from .lists import DomainList, Lists, TrackerEntry
from .quota import QuotaRecord, RateLimitInfo
from .report import (
    DataSharingLevel,
    Evidence,
    Issue,
    IssueSeverity,
    Reference,
    ReportIssue,
    ReportMeta,
    ReportPayload,
    ReportTopFix,
    ScanRecord,
    ScoreExplanation,
    ScoreLabel,
    ScoreResult,
    severity_rank,
)

__all__ = [
    'BackoffPolicy',
    'BackoffType',
    'Job',
    'JobOptions',
    'JobStatus',
    'QueueMetrics',
    'RetryDecision',
    'DomainList',
    'Lists',
    'TrackerEntry',
    'QuotaRecord',
    'RateLimitInfo',
    'DataSharingLevel',
    'Evidence',
    'Issue',
    'IssueSeverity',
    'Reference',
    'ReportIssue',
    'ReportMeta',
    'ReportPayload',
    'ReportTopFix',
    'ScanRecord',
    'ScoreExplanation',
    'ScoreLabel',
    'ScoreResult',
    'severity_rank',
]
