"""Database exceptions and translation of driver errors into service errors."""
import asyncpg

from errors import (
    InvariantViolationError,
    ServiceUnavailableError,
    TrustSafetyError,
    ValidationError,
)


class DatabaseError(Exception):
    """Base class for database errors."""
    pass


class DatabaseSchemaError(DatabaseError):
    """Raised when the schema cannot be loaded or applied."""
    pass


# Constraints whose violation means an application invariant was broken
INVARIANT_CONSTRAINTS = (
    'idx_assignments_active_item',
    'chk_token_wallets_balance',
    'chk_token_wallets_escrow_balance',
    'idx_messages_booking_seq',
)


# Unique constraints that reject a replayed request rather than signal a bug
DUPLICATE_REQUEST_CONSTRAINTS = {
    'idx_wallet_transactions_reference': (
        "Payment reference has already been credited",
        'gateway_reference'
    ),
}


def translate_postgres_error(error: Exception) -> TrustSafetyError:
    """Map a driver error that escaped a manager onto the error taxonomy.
    
    Args:
        error: Exception raised by asyncpg
        
    Returns:
        ValidationError for duplicate requests caught by a unique index,
        InvariantViolationError for other integrity violations, otherwise
        ServiceUnavailableError
    """
    if isinstance(error, asyncpg.exceptions.IntegrityConstraintViolationError):
        constraint = getattr(error, 'constraint_name', None)
        if constraint in DUPLICATE_REQUEST_CONSTRAINTS:
            message, field = DUPLICATE_REQUEST_CONSTRAINTS[constraint]
            return ValidationError(message, {'field': field, 'constraint': constraint})
        return InvariantViolationError(
            f"Database constraint violated: {constraint or error}",
            {'constraint': constraint, 'known_invariant': constraint in INVARIANT_CONSTRAINTS}
        )
    return ServiceUnavailableError(
        f"Database error: {error}",
        {'error_type': type(error).__name__}
    )


__all__ = [
    'DatabaseError',
    'DatabaseSchemaError',
    'INVARIANT_CONSTRAINTS',
    'DUPLICATE_REQUEST_CONSTRAINTS',
    'translate_postgres_error',
]
