"""Custom exception classes for the application"""

from typing import Optional, Dict, Any


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# Authentication Errors
class AuthenticationError(BaseAPIException):
    """Base authentication error"""
    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, status_code=401)


# Authorization Errors
class AuthorizationError(BaseAPIException):
    """Insufficient permissions"""
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, status_code=403)


# Resource Errors
class ResourceNotFoundError(BaseAPIException):
    """Resource not found"""
    def __init__(self, resource: str):
        super().__init__(f"{resource} not found", status_code=404)


# Validation Errors
class ValidationError(BaseAPIException):
    """Validation error"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=422, details=details)


# Business Logic Errors
class BusinessLogicError(BaseAPIException):
    """Business logic error"""
    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class NoMatchingLogsError(BusinessLogicError):
    """Export filters matched nothing"""
    def __init__(self):
        super().__init__("No audit logs match the given criteria")


class PathTraversalError(BusinessLogicError):
    """Requested archive resolves outside the archive directory"""
    def __init__(self, file_name: str):
        super().__init__(f"Archive path not allowed: {file_name}")


# System Errors
class ArchiveError(BaseAPIException):
    """Archive file could not be written or read"""
    def __init__(self, message: str = "Archive operation failed"):
        super().__init__(message, status_code=500)
