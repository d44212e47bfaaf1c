"""
Exceptions raised by the extraction and reconciliation pipeline.
"""
from typing import Optional


class ProcessingError(Exception):
    """Base exception for all pipeline errors"""
    pass


class ExtractionBackendError(ProcessingError):
    """Raised when a backend call fails (transport, auth, quota, timeout)"""
    
    def __init__(self, backend: str, message: str) -> None:
        self.backend = backend
        self.message = message
        super().__init__(f"{backend} extraction failed: {message}")


class ReconciliationError(ProcessingError):
    """Raised when the arbiter call of a reconciliation fails"""
    
    def __init__(self, arbiter: str, message: str) -> None:
        self.arbiter = arbiter
        self.message = message
        super().__init__(f"{arbiter} reconciliation failed: {message}")


class FieldDetectionError(ProcessingError):
    """Raised when no usable field list could be recovered from an example image"""
    pass


class ValidationError(ProcessingError):
    """Raised when template or field input breaks a schema constraint"""
    pass


class AuthorizationError(ProcessingError):
    """Raised when the caller does not own the referenced template or result"""
    pass


class NotFoundError(ProcessingError):
    """Raised when a template or result does not exist"""
    
    def __init__(self, kind: str, identifier: Optional[int] = None) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found")
