"""
CMS Client Exception Hierarchy
Errors raised by the CMS API client, the export poller and the transcoder
"""
from typing import Any, Dict, Optional


class CMSError(Exception):
    """Base exception for all CMS client errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "error": self.__class__.__name__,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class TransportError(CMSError):
    """Raised when the CMS gateway cannot be reached"""
    pass


class ProtocolError(CMSError):
    """Raised on a non-200 HTTP status or a body that is not valid JSON"""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 body: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.status_code = status_code
        self.body = body

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        if self.status_code is not None:
            result["statusCode"] = self.status_code
        return result


class AuthenticationError(CMSError):
    """Raised when login to the CMS gateway fails"""
    pass


class CMSResultError(CMSError):
    """Raised when the vendor result code reports an error"""

    def __init__(self, message: str, result: int, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.result = result


class ExportJobFailedError(CMSResultError):
    """Export task finished with a code that is neither 'processing' nor 'ready'"""
    pass


class CancellationError(CMSError):
    """Raised when the caller cancels a running export poll"""
    pass


class ExportTimeoutError(CMSError):
    """Raised when an export poll exceeds its attempt limit or deadline"""
    pass


class TranscodeError(CMSError):
    """Raised when the external transcoder is missing or fails"""

    def __init__(self, message: str, input_path: str = "", stderr: str = "",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.input_path = input_path
        self.stderr = stderr
