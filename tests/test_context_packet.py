"""
Tests for the Context Packet, the inbound request model and the packet builder.
"""

import pytest
from pydantic import ValidationError

from clinical_ai_gateway.core.context_packet import ContextPacket
from clinical_ai_gateway.core.enums import (
    ExpectedOutput,
    ModelFamily,
    SafetyMode,
    UserRole,
)
from clinical_ai_gateway.core.exceptions import ContextPacketValidationError
from clinical_ai_gateway.core.requests import GatewayRequest
from clinical_ai_gateway.mediation.packet_builder import (
    PATIENT_FRIENDLY_INSTRUCTION,
    ContextPacketBuilder,
    compute_request_hash,
)
from clinical_ai_gateway.repository.session_store import InMemorySessionStore
from clinical_ai_gateway.security.screening import PHIRedactor
from tests.conftest import make_packet, make_request


class TestContextPacket:
    def test_valid_packet(self):
        packet = make_packet(role="nurse", model_family="Claude-Sonnet")

        assert packet.version == "1.0"
        assert packet.user.role == UserRole.NURSE
        assert packet.task.model_family == ModelFamily.CLAUDE_SONNET
        assert packet.constraints.redact_phi is True
        assert packet.audit.ip == "unknown"

    def test_unknown_role_rejected(self):
        with pytest.raises(ContextPacketValidationError) as exc_info:
            make_packet(role="janitor")
        assert any(error.startswith("user.role") for error in exc_info.value.errors)

    def test_empty_intent_rejected(self):
        data = make_packet().to_dict()
        data["task"]["intent"] = "   "
        with pytest.raises(ContextPacketValidationError):
            ContextPacket.from_dict(data)

    def test_unsupported_version_rejected(self):
        data = make_packet().to_dict()
        data["version"] = "2.0"
        with pytest.raises(ContextPacketValidationError) as exc_info:
            ContextPacket.from_dict(data)
        assert "version" in exc_info.value.errors[0]

    def test_unknown_field_rejected(self):
        data = make_packet().to_dict()
        data["inputs"]["surprise"] = True
        with pytest.raises(ContextPacketValidationError):
            ContextPacket.from_dict(data)

    def test_packet_is_frozen(self):
        packet = make_packet()
        with pytest.raises(ValidationError):
            packet.version = "1.1"

    def test_timeout_seconds(self):
        assert make_packet(timeout_ms=2500).constraints.timeout_seconds == 2.5
        assert make_packet().constraints.timeout_seconds is None

    def test_redacted_returns_new_packet(self):
        packet = make_packet(prompt="SSN 123-45-6789")
        redacted = packet.redacted(PHIRedactor().redact)

        assert redacted.inputs.prompt == "SSN [SSN_REDACTED]"
        assert packet.inputs.prompt == "SSN 123-45-6789"
        assert redacted.user == packet.user

    def test_to_dict_is_json_safe(self):
        data = make_packet().to_dict()
        assert data["user"]["role"] == "clinician"
        assert data["task"]["model_family"] == "OpenAI-GPT-4o"
        assert isinstance(data["audit"]["request_time"], str)


class TestGatewayRequest:
    def test_camel_case_aliases(self):
        request = GatewayRequest.coerce(
            {
                "userId": "u-9",
                "role": "nurse",
                "sessionId": "s-9",
                "task": "patient_education",
                "input": "Explain the diagnosis",
                "preferences": {"outputFormat": "summary", "patientFriendly": True},
                "securityOverrides": {"redactPHI": False, "safetyLevel": "maximum"},
                "attachments": {"fhirResources": [{"id": "obs-1"}]},
            }
        )

        assert request.user_id == "u-9"
        assert request.session_id == "s-9"
        assert request.preferences.patient_friendly is True
        assert request.security_overrides.redact_phi is False
        assert request.attachments.structured_records == [{"id": "obs-1"}]

    def test_non_dict_rejected(self):
        with pytest.raises(ContextPacketValidationError):
            GatewayRequest.coerce(["not", "a", "request"])

    def test_missing_user_id_rejected(self):
        with pytest.raises(ContextPacketValidationError) as exc_info:
            GatewayRequest.coerce({"role": "nurse"})
        assert any("user_id" in error for error in exc_info.value.errors)


class TestContextPacketBuilder:
    @pytest.fixture
    def builder(self):
        return ContextPacketBuilder(
            InMemorySessionStore(),
            lower_trust_roles=["technician", "researcher"],
            lower_trust_departments=["research", "external"],
        )

    def test_builds_packet_with_strict_defaults(self, builder):
        packet = builder.build(GatewayRequest.coerce(make_request()))

        assert packet.task.intent == "Generate comprehensive summary of genomic/clinical report"
        assert packet.task.model_family == ModelFamily.OPENAI_GPT_4O
        assert packet.constraints.redact_phi is True
        assert packet.constraints.safety_mode == SafetyMode.HIGH
        assert packet.constraints.max_tokens == 1500
        assert packet.routing.agent == "GATEWAY_SUMMARIZE_REPORT"
        assert packet.user.session_id
        assert "User role: clinician" in packet.inputs.context_window

    def test_missing_task_and_input(self, builder):
        request = GatewayRequest.coerce(make_request(task=None, input=""))
        with pytest.raises(ContextPacketValidationError) as exc_info:
            builder.build(request)
        assert len(exc_info.value.errors) == 2

    def test_unknown_role(self, builder):
        with pytest.raises(ContextPacketValidationError):
            builder.build(GatewayRequest.coerce(make_request(role="visitor")))

    def test_unknown_task_passes_through_as_intent(self, builder):
        packet = builder.build(GatewayRequest.coerce(make_request(task="triage_inbox")))
        assert packet.task.intent == "triage_inbox"

    @pytest.mark.parametrize(
        "preference, family",
        [
            ("smart", ModelFamily.OPENAI_GPT_4O),
            ("fast", ModelFamily.CLAUDE_SONNET),
            ("local", ModelFamily.LOCAL_MODEL),
            ("precise", ModelFamily.CLAUDE_OPUS),
        ],
    )
    def test_model_preference_mapping(self, builder, preference, family):
        request = make_request(preferences={"model": preference})
        assert builder.build(GatewayRequest.coerce(request)).task.model_family == family

    def test_preferences_shape_prompt_and_constraints(self, builder):
        request = make_request(
            preferences={
                "output_format": "bullet_points",
                "max_length": "short",
                "include_citations": True,
                "patient_friendly": True,
            }
        )
        packet = builder.build(GatewayRequest.coerce(request))

        assert packet.task.expected_output == ExpectedOutput.REPORT
        assert packet.constraints.max_tokens == 500
        assert "Include citations and evidence levels" in packet.inputs.prompt
        assert PATIENT_FRIENDLY_INSTRUCTION in packet.inputs.prompt

    def test_attachments_appended_and_referenced(self, builder):
        request = make_request(
            attachments={
                "structured_records": [{"id": "obs-1", "code": "LOINC-1"}],
                "genomic_data": {"BRCA1": "pathogenic"},
            }
        )
        packet = builder.build(GatewayRequest.coerce(request))

        assert packet.inputs.data_refs == ("obs-1",)
        assert "Additional Context:" in packet.inputs.prompt
        assert "BRCA1" in packet.inputs.prompt

    @pytest.mark.parametrize(
        "role, department",
        [("technician", "pathology"), ("researcher", "oncology"), ("clinician", "research")],
    )
    def test_lower_trust_callers_default_to_maximum(self, builder, role, department):
        request = make_request(role=role, department=department)
        assert builder.build(GatewayRequest.coerce(request)).constraints.safety_mode == SafetyMode.MAXIMUM

    def test_explicit_overrides_win(self, builder):
        request = make_request(
            role="technician",
            security_overrides={"redact_phi": False, "safety_level": "standard", "audit_level": "forensic"},
        )
        packet = builder.build(GatewayRequest.coerce(request))

        assert packet.constraints.redact_phi is False
        assert packet.constraints.safety_mode == SafetyMode.MEDIUM
        assert packet.audit.compliance_flags == ("detailed_audit",)

    def test_previous_response_excerpt_in_context(self):
        sessions = InMemorySessionStore()
        sessions.update("s-1", lambda ctx: setattr(ctx, "last_response", "x" * 500))
        builder = ContextPacketBuilder(sessions)

        packet = builder.build(GatewayRequest.coerce(make_request(session_id="s-1")))

        excerpt = packet.inputs.context_window[0]
        assert excerpt.startswith("Previous interaction: ")
        assert excerpt == "Previous interaction: " + "x" * 200 + "..."

    def test_request_hash_is_deterministic(self):
        first = GatewayRequest.coerce(make_request(session_id="s-1"))
        second = GatewayRequest.coerce(make_request(session_id="s-1"))
        different = GatewayRequest.coerce(make_request(session_id="s-1", input="Other input"))

        assert compute_request_hash(first) == compute_request_hash(second)
        assert compute_request_hash(first) != compute_request_hash(different)
        assert len(compute_request_hash(first)) == 64
