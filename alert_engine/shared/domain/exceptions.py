"""Custom exceptions for the alert engine."""


class AlertEngineException(Exception):
    """Base exception for all alert engine errors."""

    def __init__(self, message: str, details: dict | None = None):
        """
        Initialize alert engine exception.

        Args:
            message: Human-readable error message
            details: Optional dict with additional error context
        """
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationException(AlertEngineException):
    """Raised when a rule, condition or policy is malformed."""

    def __init__(self, message: str, errors: list[str] | None = None, details: dict | None = None):
        details = dict(details or {})
        if errors:
            details["errors"] = errors
        self.errors = errors or []
        super().__init__(message, details)


class RuleValidationError(ValidationException):
    """Raised when rule conditions fail validation."""

    def __init__(self, errors: list[str]):
        super().__init__(message=f"Invalid rule conditions: {', '.join(errors)}", errors=errors)


class PolicyValidationError(ValidationException):
    """Raised when an escalation policy fails validation."""

    def __init__(self, errors: list[str]):
        super().__init__(message=f"Invalid policy: {', '.join(errors)}", errors=errors)


class ResourceNotFoundException(AlertEngineException):
    """Raised when a requested resource is not found."""

    pass


class RuleNotFoundError(ResourceNotFoundException):
    """Raised when a rule is not found."""

    def __init__(self, rule_id: str):
        super().__init__(message=f"Rule {rule_id} not found", details={"rule_id": rule_id})


class PolicyNotFoundError(ResourceNotFoundException):
    """Raised when an escalation policy is not found."""

    def __init__(self, policy_id: str):
        super().__init__(message=f"Policy {policy_id} not found", details={"policy_id": policy_id})


class SuppressionWindowNotFoundError(ResourceNotFoundException):
    """Raised when a suppression window is not found on a policy."""

    def __init__(self, policy_id: str, window_id: str):
        super().__init__(
            message=f"Suppression window {window_id} not found",
            details={"policy_id": policy_id, "window_id": window_id},
        )


class IncidentNotFoundError(ResourceNotFoundException):
    """Raised when an incident is not found."""

    def __init__(self, incident_id: str):
        super().__init__(
            message=f"Incident {incident_id} not found", details={"incident_id": incident_id}
        )


class EscalationNotFoundError(ResourceNotFoundException):
    """Raised when no escalation state exists for an incident."""

    def __init__(self, incident_id: str):
        super().__init__(
            message=f"No escalation found for incident {incident_id}",
            details={"incident_id": incident_id},
        )


class AcknowledgmentNotFoundError(ResourceNotFoundException):
    """Raised when no acknowledgment record exists for an alert or record id."""

    def __init__(self, key: str):
        super().__init__(message=f"No acknowledgment record found for {key}", details={"key": key})


class PolicyConflictError(AlertEngineException):
    """Raised when a policy operation conflicts with the current policy set."""

    pass


class TransientDeliveryError(AlertEngineException):
    """Raised when a channel handler fails to deliver a notification."""

    def __init__(self, message: str, channel: str | None = None, original_error: Exception | None = None):
        details = {}
        if channel:
            details["channel"] = channel
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__
        super().__init__(message, details)


class RuleEvaluationTimeoutError(AlertEngineException):
    """Raised when a rule evaluation exceeds its time bound."""

    def __init__(self, rule_id: str, timeout_seconds: float):
        super().__init__(
            message=f"Rule {rule_id} evaluation timed out after {timeout_seconds}s",
            details={"rule_id": rule_id, "timeout_seconds": timeout_seconds},
        )


class ConfigurationException(AlertEngineException):
    """Raised when runtime configuration values are rejected."""

    pass


class IncidentStateError(AlertEngineException):
    """Raised when an incident transition is not allowed from its current status."""

    def __init__(self, incident_id: str, message: str):
        super().__init__(message=message, details={"incident_id": incident_id})


class AcknowledgmentStateError(AlertEngineException):
    """Raised when an acknowledgment action is not allowed from the record's current status."""

    def __init__(self, record_id: str, status: str, action: str):
        super().__init__(
            message=f"Cannot {action} alert in status: {status}",
            details={"record_id": record_id, "status": status},
        )
