"""
Domain Errors — Raised by services, rendered by the API exception handlers.
"""
from typing import Optional


class PhramesError(Exception):
    """Base class; ``status_code`` is the HTTP status the API maps it to."""

    status_code = 500
    public_message: Optional[str] = None

    def __init__(self, message: str = "", **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def client_message(self) -> str:
        return self.public_message or self.message


class ValidationError(PhramesError):
    status_code = 400


class InvalidAction(ValidationError):
    pass


class NotFoundError(PhramesError):
    status_code = 404


class AuthenticationError(PhramesError):
    status_code = 401


class AuthorizationError(PhramesError):
    status_code = 403


class DuplicateOrder(PhramesError):
    status_code = 409


class PreconditionFailed(PhramesError):
    """The state read before a write no longer holds; nothing was written."""

    status_code = 409


class OrphanWebhook(PhramesError):
    """A well-formed webhook for an order the ledger does not know.

    Recorded as an anomaly; never propagated back to the gateway.
    """

    status_code = 200


class GatewayError(PhramesError):
    status_code = 502
    public_message = "Failed to create payment order. Please try again."


class PartialBatchFailure(PhramesError):
    """A chunk commit failed; earlier chunks stay committed."""

    status_code = 500

    def __init__(self, message: str = "", batch_id: str = "", committed: int = 0, **context):
        super().__init__(message, batch_id=batch_id, committed=committed, **context)
        self.batch_id = batch_id
        self.committed = committed

    def client_message(self) -> str:
        return f"Batch {self.batch_id} stopped after {self.committed} committed item(s)"
