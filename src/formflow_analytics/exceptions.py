"""Engine error taxonomy"""
from typing import Any, Optional


class AnalyticsError(Exception):
    """Base exception for engine operations"""
    pass


class ValidationError(AnalyticsError):
    pass


class NotFoundError(AnalyticsError):
    pass


class ConflictError(AnalyticsError):
    pass


class AlreadyTerminalError(ConflictError):
    def __init__(self, token: str, status: str):
        super().__init__(f"Handoff {token} is already {status}")
        self.token = token
        self.status = status


class StorageError(AnalyticsError):
    def __init__(self, message: str, partial_result: Optional[Any] = None):
        super().__init__(message)
        self.partial_result = partial_result
