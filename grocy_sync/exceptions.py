"""Error kinds raised by the sync core"""

from typing import Optional


class GrocySyncError(Exception):
    """Base class for all grocy-sync errors"""


class NetworkError(GrocySyncError):
    """Server unreachable, timed out or answered with an error status"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PartialSyncFailure(GrocySyncError):
    """A push batch failed; none of its mutations are considered committed"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class MalformedServerRecord(GrocySyncError):
    """A server record is missing a field or has one of the wrong type"""

    def __init__(self, record_type: str, data, reason: str):
        super().__init__(f"Malformed {record_type} record ({reason}): {data!r}")
        self.record_type = record_type
        self.data = data
        self.reason = reason
