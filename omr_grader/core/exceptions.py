"""
Custom exceptions for the OMR grading core
"""
from typing import List, Optional

from fastapi import HTTPException, status


class BaseAPIException(HTTPException):
    """Base exception for all grading errors"""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: str = None,
        headers: dict = None,
        issues: Optional[List[str]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code
        self.issues = list(issues or [])


class NotFoundException(BaseAPIException):
    """Resource not found"""

    def __init__(self, resource: str, identifier: str = None):
        detail = f"{resource} not found"
        if identifier:
            detail = f"{resource} '{identifier}' not found"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code="NOT_FOUND"
        )


class ConfigurationError(BaseAPIException):
    """Invalid layout parameters, answer key or grading configuration"""

    def __init__(self, message: str):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=message,
            error_code="CONFIGURATION_ERROR",
            issues=[message]
        )


class InvalidImageError(BaseAPIException):
    """Image is unreadable, blank or too small to grade"""

    def __init__(self, reason: str):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=reason,
            error_code="INVALID_IMAGE",
            issues=[reason]
        )


class AlignmentError(BaseAPIException):
    """Fiducial markers missing; the sheet must be re-captured"""

    def __init__(self, message: str, issues: Optional[List[str]] = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=message,
            error_code="ALIGNMENT_ERROR",
            issues=issues or [message]
        )


class TierInvocationError(BaseAPIException):
    """A single detection tier failed (timeout, network, malformed response)"""

    def __init__(self, tier: str, reason: str, timed_out: bool = False):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Tier '{tier}' failed: {reason}",
            error_code="TIER_INVOCATION_ERROR"
        )
        self.tier = tier
        self.reason = reason
        self.timed_out = timed_out


class DetectionError(BaseAPIException):
    """Every detection tier failed"""

    def __init__(self, message: str, issues: Optional[List[str]] = None):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=message,
            error_code="DETECTION_ERROR",
            issues=issues
        )


class ConcurrencyConflict(BaseAPIException):
    """Another processing attempt already holds the submission"""

    def __init__(self, submission_id: str, message: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=message,
            error_code="ALREADY_IN_PROGRESS",
            issues=[message]
        )
        self.submission_id = submission_id


class InvalidTransitionError(BaseAPIException):
    """Requested state transition is not allowed"""

    def __init__(self, submission_id: str, message: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=message,
            error_code="INVALID_TRANSITION",
            issues=[message]
        )
        self.submission_id = submission_id
