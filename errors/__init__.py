"""Error taxonomy shared by every trust & safety component.

Managers raise these exceptions; the service facade converts them into
structured results so nothing crosses the service boundary uncaught.
"""
from typing import Any, Dict, Optional

__all__ = [
    'TrustSafetyError',
    'ValidationError',
    'NotFoundError',
    'AuthorizationError',
    'InsufficientBalanceError',
    'NoEligibleStaffError',
    'InvariantViolationError',
    'ServiceUnavailableError',
]


class TrustSafetyError(Exception):
    """Base class for errors raised by the pipeline."""

    code = 'error'
    recoverable = True

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'message': self.message,
            'details': self.details
        }


class ValidationError(TrustSafetyError):
    """Malformed input or a request that is not allowed in the current state."""
    code = 'validation_error'


class NotFoundError(TrustSafetyError):
    """Referenced booking, message, assignment or alert does not exist."""
    code = 'not_found'

    def __init__(self, resource: str, resource_id: Any):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            f"{resource.capitalize()} {resource_id} not found",
            {'resource': resource, 'id': str(resource_id)}
        )


class AuthorizationError(TrustSafetyError):
    """Caller lacks the role or relationship required for the operation."""
    code = 'forbidden'


class InsufficientBalanceError(TrustSafetyError):
    """Raised when an escrow hold exceeds the spendable balance."""
    code = 'insufficient_balance'

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient token balance: required {required}, available {available}",
            {'required': required, 'available': available}
        )


class NoEligibleStaffError(TrustSafetyError):
    """Raised when an assignment is requested and no staff account is eligible."""
    code = 'no_staff_available'

    def __init__(self, item_type: str):
        self.item_type = item_type
        super().__init__(
            f"No staff available for {item_type} assignment",
            {'item_type': item_type}
        )


class InvariantViolationError(TrustSafetyError):
    """A ledger or assignment invariant would have been broken.

    Never expected in correct operation. The enclosing transaction has been
    rolled back when this propagates.
    """
    code = 'invariant_violation'
    recoverable = False


class ServiceUnavailableError(TrustSafetyError):
    """The persistence layer could not be reached."""
    code = 'service_unavailable'
