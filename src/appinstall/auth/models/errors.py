"""Error taxonomy for the app-instance token lifecycle.

A single exception type carries a tagged ``ErrorKind`` so callers can match
on the kind exhaustively:

    try:
        token = await manager.get_valid_access_token(connection)
    except TokenLifecycleError as e:
        match e.kind:
            case ErrorKind.REAUTHORIZATION_REQUIRED: ...
            case ErrorKind.TOKEN_EXCHANGE_FAILED: ...
            case ErrorKind.NOT_FOUND: ...
            case ErrorKind.INVALID_STATE: ...
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Distinguishable failure modes of token and installation operations."""

    REAUTHORIZATION_REQUIRED = "reauthorization_required"
    TOKEN_EXCHANGE_FAILED = "token_exchange_failed"
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"


class TokenLifecycleError(Exception):
    """Raised by every operation of the token lifecycle.

    Attributes:
        kind: Which failure mode occurred
        instance_id: Installation the failure refers to, when known
        status_code: HTTP status reported by the token endpoint, when any
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        instance_id: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.instance_id = instance_id
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Only transient exchange failures are worth retrying."""
        return self.kind is ErrorKind.TOKEN_EXCHANGE_FAILED

    def __repr__(self) -> str:
        return (
            f"TokenLifecycleError(kind={self.kind.value!r}, "
            f"instance_id={self.instance_id!r}, message={str(self)!r})"
        )


def reauthorization_required(
    instance_id: str, status_code: int | None = None
) -> TokenLifecycleError:
    return TokenLifecycleError(
        ErrorKind.REAUTHORIZATION_REQUIRED,
        f"Installation {instance_id} is no longer valid and must be re-installed",
        instance_id=instance_id,
        status_code=status_code,
    )


def token_exchange_failed(
    message: str,
    instance_id: str | None = None,
    status_code: int | None = None,
) -> TokenLifecycleError:
    return TokenLifecycleError(
        ErrorKind.TOKEN_EXCHANGE_FAILED,
        message,
        instance_id=instance_id,
        status_code=status_code,
    )


def not_found(instance_id: str) -> TokenLifecycleError:
    return TokenLifecycleError(
        ErrorKind.NOT_FOUND,
        f"No connection stored for installation {instance_id}",
        instance_id=instance_id,
    )


def invalid_state(message: str) -> TokenLifecycleError:
    return TokenLifecycleError(ErrorKind.INVALID_STATE, message)
