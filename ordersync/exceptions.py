"""
Custom exception hierarchy for order sync operations.

Exception Hierarchy:
    SyncError (base)
    ├── FeedError                - Order feed failed (fatal to the sync attempt)
    │   ├── FeedConnectionError  - Network/timeout issues
    │   ├── FeedAPIError         - HTTP error status or GraphQL errors
    │   └── FeedDataError        - Invalid response structure
    ├── StoreError
    │   └── StoreWriteError      - Batch write failed and was rolled back
    └── SyncConflictError        - Another run holds the sync state row

    ValidationError              - Input validation failed
    QueryTimeoutError            - Store query exceeded timeout
"""


class SyncError(Exception):
    """Base exception for all sync-related errors."""

    def __init__(self, message: str, details: str = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class FeedError(SyncError):
    """Any failure talking to the external order feed."""


class FeedConnectionError(FeedError):
    """
    Network-related errors (timeout, connection refused, etc.).

    The client never retries these itself; the next sync run resumes
    from the saved cursor.
    """

    def __init__(self, message: str, details: str = None, retry_after: int = None):
        super().__init__(message, details)
        self.retry_after = retry_after


class FeedAPIError(FeedError):
    """
    Feed returned an error response.

    Check status_code and error_code for specifics (e.g. THROTTLED).
    """

    def __init__(
        self,
        message: str,
        details: str = None,
        status_code: int = None,
        error_code: str = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code
        self.error_code = error_code


class FeedDataError(FeedError):
    """
    Feed response has unexpected structure.

    This indicates a contract violation - the API returned
    data in a format we don't understand.
    """

    def __init__(self, message: str, details: str = None, expected: str = None, got: str = None):
        super().__init__(message, details)
        self.expected = expected
        self.got = got


class StoreError(SyncError):
    """Local store failure."""


class StoreWriteError(StoreError):
    """A batch upsert failed; nothing from that batch was committed."""

    def __init__(self, message: str, details: str = None, table: str = None, row_count: int = 0):
        super().__init__(message, details)
        self.table = table
        self.row_count = row_count


class SyncConflictError(SyncError):
    """
    Sync state row changed underneath us.

    Raised when the row is held by a live run, or when its version no
    longer matches the one this run claimed.
    """

    def __init__(
        self,
        message: str,
        details: str = None,
        entity_type: str = None,
        expected_version: int = None,
        actual_version: int = None,
    ):
        super().__init__(message, details)
        self.entity_type = entity_type
        self.expected_version = expected_version
        self.actual_version = actual_version


class ValidationError(Exception):
    """
    Input validation failed.

    Used for validating caller input before processing.
    """

    def __init__(self, field: str, message: str, value: any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        if self.value is not None:
            return f"{self.field}: {self.message} (got: {self.value!r})"
        return f"{self.field}: {self.message}"


class QueryTimeoutError(Exception):
    """Database query exceeded timeout."""

    def __init__(self, query: str, timeout: float, details: str = None):
        self.query = query[:200] + "..." if len(query) > 200 else query
        self.timeout = timeout
        self.details = details
        message = f"Query timed out after {timeout}s"
        if details:
            message = f"{message}: {details}"
        super().__init__(message)

    def __str__(self) -> str:
        return f"QueryTimeoutError: Query timed out after {self.timeout}s - {self.query}"
