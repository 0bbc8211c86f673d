class CDSAPIError(Exception):
    """Base exception for Climate Data Store API errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class CDSAuthError(CDSAPIError):
    """Authentication failed."""

    pass


class RemoteJobFailed(CDSAPIError):
    """A submitted request reached the failed state."""

    pass


class NoDataAvailable(CDSAPIError):
    """The requested subset holds no data yet."""

    pass


class NoUpdateNeeded(CDSAPIError):
    """The resource has not changed since the last recorded version."""

    def __init__(self, version_token: str):
        super().__init__(f"No update needed (resource updated {version_token})")
        self.version_token = version_token
