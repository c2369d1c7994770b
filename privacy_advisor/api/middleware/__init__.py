"""
API middleware components.
"""

from privacy_advisor.api.middleware.rate_limit import AdmissionMiddleware
from privacy_advisor.api.middleware.request_context import RequestContextMiddleware

__all__ = [
    'AdmissionMiddleware',
    'RequestContextMiddleware'
]
