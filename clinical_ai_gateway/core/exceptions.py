"""
Domain Exceptions for the Clinical AI Gateway

This module defines all custom exceptions raised inside the gateway. The
facade never lets them escape to callers: each one is mapped to an ErrorCode
and normalized into the structured error shape {message, code, suggestions}.

Exception Hierarchy:
    GatewayError (base)
    ├── ConfigurationError            → Invalid settings or policy file
    ├── ContextPacketValidationError  → Malformed/incomplete packet (fast-fail)
    ├── SecurityViolationError        → Injection or content-policy hit
    ├── ProviderError                 → One model attempt failed (transient)
    │   ├── ProviderRateLimitError
    │   ├── ProviderContentFilteredError
    │   ├── ProviderTimeoutError
    │   ├── MalformedResponseError
    │   └── ProviderUnavailableError
    ├── CascadeExhaustedError         → Every candidate failed (terminal)
    ├── AuditStoreError               → Audit persistence failed
    └── WorkflowError
        ├── WorkflowNotFoundError
        └── WorkflowPermissionError

Usage:
    from clinical_ai_gateway.core.exceptions import CascadeExhaustedError

    try:
        result = executor.execute(prompt, decision, constraints)
    except CascadeExhaustedError as e:
        logger.error(f"No model available: {e.attempted_models}")
"""

from typing import List, Optional, Sequence

from clinical_ai_gateway.core.enums import ErrorCode


# =============================================================================
# STAGE 1: BASE EXCEPTION
# =============================================================================


class GatewayError(Exception):
    """
    Base exception for all gateway errors.

    What it does:
        Provides a common base class carrying a human-readable message, a
        context dictionary for debugging, and the ErrorCode used when the
        error is surfaced to a caller.

    Attributes:
        message: Human-readable error description
        context: Dictionary of additional context for debugging
        error_code: Machine-readable code for the structured error
    """

    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, context: Optional[dict] = None):
        self.message = message
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format message with context for display."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{context_str}]"
        return self.message


# =============================================================================
# STAGE 2: CONFIGURATION AND VALIDATION
# =============================================================================


class ConfigurationError(GatewayError):
    """
    Error in gateway configuration.

    When raised:
        - Invalid numeric settings (e.g. batch concurrency of zero)
        - Routing policy file references unknown models or roles
        - Policy file cannot be read or parsed
    """

    pass


class ContextPacketValidationError(GatewayError):
    """
    Context Packet (or the request it is built from) is malformed.

    Rejected before any model call. Not audited: no packet exists yet.

    Attributes:
        errors: Individual validation failures
    """

    error_code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, errors: Optional[Sequence[str]] = None):
        self.errors: List[str] = list(errors or [])
        super().__init__(message, context={"errors": "; ".join(self.errors)} if self.errors else None)


# =============================================================================
# STAGE 3: SECURITY
# =============================================================================


class SecurityViolationError(GatewayError):
    """
    Prompt failed pre-call security screening.

    Always produces exactly one audit record tagged as a security rejection
    and never enters the fallback cascade.

    Attributes:
        violations: Human-readable violation descriptions
        risk_score: Injection risk score in [0, 1]
    """

    error_code = ErrorCode.SECURITY_VIOLATION

    def __init__(self, violations: Sequence[str], risk_score: float = 0.0):
        self.violations = list(violations)
        self.risk_score = risk_score
        super().__init__(
            "Request blocked by security screening",
            context={"violations": len(self.violations), "risk_score": risk_score},
        )


# =============================================================================
# STAGE 4: PROVIDER ERRORS
# =============================================================================


class ProviderError(GatewayError):
    """
    Error from a single model attempt.

    What it does:
        Wraps errors from the underlying provider SDK with the provider and
        model that failed. Inside the cascade these are transient: the
        executor records them and advances to the next candidate.

    Attributes:
        provider: The provider name (openai, anthropic, mistral, local)
        model: The model family that was attempted
        original_error: The wrapped original exception
    """

    error_code = ErrorCode.CASCADE_EXHAUSTED

    def __init__(
        self,
        message: str,
        provider: str,
        model: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.provider = provider
        self.model = model
        self.original_error = original_error
        super().__init__(
            message,
            context={
                "provider": provider,
                "model": model,
                "original_error": str(original_error) if original_error else None,
            },
        )


class ProviderRateLimitError(ProviderError):
    """
    Provider rate limit exceeded.

    Attributes:
        retry_after: Seconds to wait before retrying (if known)
    """

    def __init__(
        self,
        provider: str,
        retry_after: Optional[float] = None,
        original_error: Optional[Exception] = None,
    ):
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit exceeded for {provider}", provider=provider, original_error=original_error
        )
        self.context["retry_after"] = retry_after


class ProviderContentFilteredError(ProviderError):
    """Provider refused to generate content due to its own safety filters."""

    def __init__(self, provider: str, reason: Optional[str] = None):
        super().__init__(
            f"Content filtered by {provider} safety settings: {reason or 'unknown reason'}",
            provider=provider,
        )
        self.reason = reason


class ProviderTimeoutError(ProviderError):
    """
    A single attempt exceeded its time bound.

    Attributes:
        timeout_seconds: The bound that was exceeded
    """

    def __init__(self, provider: str, model: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"{model} did not respond within {timeout_seconds}s",
            provider=provider,
            model=model,
        )


class MalformedResponseError(ProviderError):
    """Provider returned something other than non-empty text with token usage."""

    pass


class ProviderUnavailableError(ProviderError):
    """No client is registered for the requested model family."""

    def __init__(self, model: str):
        super().__init__(f"No provider registered for model '{model}'", provider="none", model=model)


# =============================================================================
# STAGE 5: TERMINAL FAILURE
# =============================================================================


class CascadeExhaustedError(GatewayError):
    """
    Every candidate in the fallback cascade failed.

    Fatal for the request, not retried further, always audited.

    Attributes:
        attempted_models: Models attempted, in order
        failures: One error description per attempted model
    """

    error_code = ErrorCode.CASCADE_EXHAUSTED

    def __init__(self, attempted_models: Sequence[str], failures: Sequence[str]):
        self.attempted_models = list(attempted_models)
        self.failures = list(failures)
        super().__init__(
            "All models in fallback cascade failed",
            context={"attempted": ", ".join(self.attempted_models)},
        )


# =============================================================================
# STAGE 6: STORAGE
# =============================================================================


class AuditStoreError(GatewayError):
    """
    Audit persistence failed.

    The recorder catches this: the business outcome is returned regardless and
    the near miss is surfaced on the audit near-miss channel.
    """

    def __init__(self, audit_id: str, reason: str):
        self.audit_id = audit_id
        self.reason = reason
        super().__init__(
            f"Failed to persist audit record {audit_id}: {reason}",
            context={"audit_id": audit_id},
        )


# =============================================================================
# STAGE 7: WORKFLOWS
# =============================================================================


class WorkflowError(GatewayError):
    """Base class for workflow errors."""

    pass


class WorkflowNotFoundError(WorkflowError):
    error_code = ErrorCode.WORKFLOW_NOT_FOUND

    def __init__(self, workflow_name: str):
        self.workflow_name = workflow_name
        super().__init__(f"Workflow '{workflow_name}' not found")


class WorkflowPermissionError(WorkflowError):
    """Caller role is not among the workflow's required roles."""

    error_code = ErrorCode.WORKFLOW_PERMISSION_DENIED

    def __init__(self, workflow_name: str, role: str, required_roles: Sequence[str]):
        self.workflow_name = workflow_name
        self.role = role
        self.required_roles = list(required_roles)
        super().__init__(
            f"Insufficient permissions. Required roles: {', '.join(self.required_roles)}",
            context={"workflow": workflow_name, "role": role},
        )
