"""
Application exceptions.
"""
from typing import Optional, Dict, Any


class QanoonMateError(Exception):
    """Base class for domain errors"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(QanoonMateError):
    """Requested record does not exist"""
    pass


class PermissionDeniedError(QanoonMateError):
    """Caller may not act on the record"""
    pass


class ValidationError(QanoonMateError):
    """Business rule validation failed"""
    pass


class ConflictError(QanoonMateError):
    """Operation conflicts with the current state of a record"""
    pass


class InvalidTransitionError(ConflictError):
    """Status transition is not allowed from the current status"""
    def __init__(self, message: str, current_status: str, action: str, details: Optional[Dict[str, Any]] = None):
        self.current_status = current_status
        self.action = action
        merged = {"current_status": current_status, "action": action}
        merged.update(details or {})
        super().__init__(message, merged)


class UploadRejectedError(ValidationError):
    """Uploaded file failed type or size validation"""
    pass


class ExternalServiceError(QanoonMateError):
    """Failure talking to an external system"""
    def __init__(self, message: str, system: str, details: Optional[Dict[str, Any]] = None):
        self.system = system
        super().__init__(message, details)


class AssistantError(ExternalServiceError):
    """AI assistant inference failed"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "ASSISTANT", details)


class PaymentGatewayError(ExternalServiceError):
    """Payment gateway call failed"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "PAYMENT_GATEWAY", details)
