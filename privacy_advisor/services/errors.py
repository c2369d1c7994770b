"""
Domain exceptions raised by the service layer.

The API layer maps these onto its APIException hierarchy; workers and the
requeue tool let them propagate.
"""


class ServiceError(Exception):
    """Base class for service-layer failures."""


class JobNotFoundError(ServiceError):
    """A job id is not known to the broker."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class BrokerError(ServiceError):
    """The queue backend rejected or failed an operation."""


class ListsUnavailableError(ServiceError):
    """Neither the backing store nor the bundled defaults yield usable lists."""


class QuotaStoreError(ServiceError):
    """The quota store failed to read or update a counter."""


class ScanNotFoundError(ServiceError):
    """A scan id is not known to the scan repository."""

    def __init__(self, scan_id: str):
        self.scan_id = scan_id
        super().__init__(f"Scan {scan_id} not found")
