"""
Gateway Request - Task-Oriented Inbound Call

The facade accepts a GatewayRequest (or an equivalent dict) and the packet
builder translates it into a Context Packet. Field names accept both
snake_case and the camelCase used by upstream application callers.

Request Structure:
    GatewayRequest
    ├── user_id / role / department / session_id   (from identity collaborator)
    ├── task / input                                (required by the builder)
    ├── attachments                                 (from clinical-data collaborator)
    ├── preferences                                 (model tier, format, length)
    ├── security_overrides / security               (redact PHI, safety, audit level)
    └── context / requestContext                    (ip, user agent)

Missing task kind or input text are not rejected here but by the builder, so
the failure carries the VALIDATION_ERROR code on the structured response.
"""

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from clinical_ai_gateway.core.context_packet import format_validation_errors
from clinical_ai_gateway.core.enums import (
    AuditLevel,
    ModelPreference,
    OutputFormat,
    OutputLength,
    SafetyLevel,
)
from clinical_ai_gateway.core.exceptions import ContextPacketValidationError


class _RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Attachments(_RequestModel):
    """Clinical data supplied alongside the request. Opaque to the gateway."""

    structured_records: List[Dict[str, Any]] = Field(
        default_factory=list,
        validation_alias=AliasChoices("structured_records", "fhir_resources", "fhirResources"),
    )
    genomic_data: Optional[Dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("genomic_data", "genomicData")
    )
    lab_results: List[Dict[str, Any]] = Field(
        default_factory=list, validation_alias=AliasChoices("lab_results", "labResults")
    )
    clinical_notes: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("clinical_notes", "clinicalNotes")
    )

    @property
    def is_empty(self) -> bool:
        return not (
            self.structured_records or self.genomic_data or self.lab_results or self.clinical_notes
        )


class Preferences(_RequestModel):
    model: Optional[ModelPreference] = None
    output_format: Optional[OutputFormat] = Field(
        default=None, validation_alias=AliasChoices("output_format", "outputFormat")
    )
    max_length: Optional[OutputLength] = Field(
        default=None, validation_alias=AliasChoices("max_length", "maxLength")
    )
    include_citations: bool = Field(
        default=False, validation_alias=AliasChoices("include_citations", "includeCitations")
    )
    patient_friendly: bool = Field(
        default=False, validation_alias=AliasChoices("patient_friendly", "patientFriendly")
    )


class SecurityOverrides(_RequestModel):
    """Caller overrides; absent values fall back to the stricter defaults."""

    redact_phi: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("redact_phi", "redactPHI", "redactPhi")
    )
    safety_level: Optional[SafetyLevel] = Field(
        default=None, validation_alias=AliasChoices("safety_level", "safetyLevel")
    )
    audit_level: Optional[AuditLevel] = Field(
        default=None, validation_alias=AliasChoices("audit_level", "auditLevel")
    )


class RequestContext(_RequestModel):
    ip: Optional[str] = None
    user_agent: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("user_agent", "userAgent")
    )
    timeout_ms: Optional[int] = Field(
        default=None, ge=1, validation_alias=AliasChoices("timeout_ms", "timeoutMs")
    )


class GatewayRequest(_RequestModel):
    """
    One task-oriented call into the gateway.

    Role is kept as free text here; the builder maps it onto UserRole so an
    unknown role is reported as a validation failure rather than a parse error.
    """

    user_id: str = Field(..., min_length=1, validation_alias=AliasChoices("user_id", "userId"))
    role: str = Field(..., validation_alias=AliasChoices("role", "userRole"))
    department: str = ""
    session_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("session_id", "sessionId")
    )
    task: Optional[str] = None
    input: Optional[str] = None
    attachments: Attachments = Field(default_factory=Attachments)
    preferences: Preferences = Field(default_factory=Preferences)
    security_overrides: SecurityOverrides = Field(
        default_factory=SecurityOverrides,
        validation_alias=AliasChoices("security_overrides", "securityOverrides", "security"),
    )
    context: RequestContext = Field(
        default_factory=RequestContext,
        validation_alias=AliasChoices("context", "request_context", "requestContext"),
    )

    @classmethod
    def coerce(cls, request: Any) -> "GatewayRequest":
        """
        Accept a GatewayRequest or a plain dict.

        Raises:
            ContextPacketValidationError: If the payload does not parse
        """
        if isinstance(request, cls):
            return request
        if not isinstance(request, dict):
            raise ContextPacketValidationError(
                "Request must be a GatewayRequest or a dict",
                errors=[f"got {type(request).__name__}"],
            )
        try:
            return cls.model_validate(request)
        except ValidationError as e:
            raise ContextPacketValidationError(
                "Request validation failed", errors=format_validation_errors(e)
            ) from e

    def with_updates(self, **changes: Any) -> "GatewayRequest":
        """Copy of this request with top-level fields replaced."""
        return self.model_copy(update=changes)
