"""
ContextGrade - Error Taxonomy

Every externally visible error carries a stable kind label and a
human-readable message. Recommendation and context-gathering failures
never appear here: they are absorbed into a fallback recommendation.
"""
from typing import Any, Dict, Optional


class DecisionEngineError(Exception):
    """Base class for all engine errors."""

    kind = "Error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(DecisionEngineError):
    """Record absent, or present but outside the caller's client scope."""

    kind = "NotFound"
    status_code = 404


class DecisionNotFound(NotFoundError):
    def __init__(self, decision_id: str):
        super().__init__("Decision not found", {"decision_id": decision_id})
        self.decision_id = decision_id


class ClientNotFound(NotFoundError):
    def __init__(self, client_id: str):
        super().__init__("Client not found", {"client_id": client_id})
        self.client_id = client_id


class InvalidAction(DecisionEngineError):
    """Unrecognized review action."""

    kind = "InvalidAction"
    status_code = 400

    def __init__(self, action: str, valid_actions=None):
        details = {"action": action}
        if valid_actions:
            details["valid_actions"] = list(valid_actions)
        super().__init__(f"Invalid action: {action}", details)
        self.action = action


class ValidationError(DecisionEngineError):
    """Malformed request payload."""

    kind = "ValidationError"
    status_code = 400


class InactiveClient(DecisionEngineError):
    """Client resolved but deactivated."""

    kind = "InactiveClient"
    status_code = 403

    def __init__(self, client_id: str):
        super().__init__("Client is inactive", {"client_id": client_id})
        self.client_id = client_id


class ConflictError(DecisionEngineError):
    """Duplicate unique key on a path that is not idempotent."""

    kind = "ConflictError"
    status_code = 409


class DecisionAlreadyResolved(ConflictError):
    def __init__(self, decision_id: str, status: str):
        super().__init__(
            f"Decision already resolved with status {status}",
            {"decision_id": decision_id, "status": status},
        )
        self.decision_id = decision_id
        self.status = status


class ImmutableRecordError(DecisionEngineError):
    """Attempt to mutate or delete an append-only record."""

    kind = "ImmutableRecord"
    status_code = 500


class Unauthenticated(DecisionEngineError):
    """No valid credential was presented."""

    kind = "Unauthorized"
    status_code = 401


class AccessDenied(DecisionEngineError):
    """Authenticated, but no client could be resolved for the caller."""

    kind = "Forbidden"
    status_code = 403
