"""
Model Router - Role-Based Model Selection

Given a Context Packet, selects the model for the first attempt and builds
the ordered fallback cascade from the static policy tables.

Decision Order:
    1. Role missing from the matrix   → restricted model (explicit reasoning)
    2. Requested family permitted     → use it
    3. Requested family not permitted → role's highest-priority family
    4. safety_mode=maximum AND redact_phi, independent of role
                                      → restricted model, local-only cascade

Pipeline Position:
    Packet → Screening → [Router] → Executor → Redaction → Audit
                          ^^^^^^^^
                          You are here

The router is pure: no I/O, no state beyond the policy, and it never raises
for a known or unknown role.
"""

from typing import List, Optional

from loguru import logger

from clinical_ai_gateway.core.context_packet import ContextPacket
from clinical_ai_gateway.core.enums import SafetyMode
from clinical_ai_gateway.core.models import RoutingDecision
from clinical_ai_gateway.routing.policy import RoutingPolicy


class ModelRouter:
    """
    Selects a model and fallback cascade for each packet.

    What it does:
        Applies the role-access matrix and the maximum-safety override,
        then derives the cascade, restricted to models the caller may use.

    Why it exists:
        1. Role-based access control over model families
        2. Sensitive content never leaves the trusted boundary model when
           maximum safety and PHI redaction are both requested
        3. Observability: reasoning text plus illustrative cost estimate

    Example:
        >>> router = ModelRouter()
        >>> decision = router.route(packet)
        >>> decision.selected_model, decision.fallback_cascade
    """

    def __init__(self, policy: Optional[RoutingPolicy] = None):
        self._policy = policy or RoutingPolicy.default()

    @property
    def policy(self) -> RoutingPolicy:
        return self._policy

    def route(self, packet: ContextPacket) -> RoutingDecision:
        policy = self._policy
        role = packet.user.role.value
        requested = packet.task.model_family.value
        permitted = policy.permitted_models(role)

        downgraded = False
        forced_restricted = False

        # =====================================================================
        # STAGE 1: ROLE-BASED SELECTION
        # =====================================================================
        if not permitted:
            selected = policy.restricted_model
            reasoning = (
                f"Role '{role}' has no entry in the role-access matrix; "
                f"using most restrictive model {selected}"
            )
        elif requested in permitted:
            selected = requested
            reasoning = f"Selected {selected} for role {role}"
        else:
            selected = permitted[0]
            downgraded = True
            reasoning = (
                f"User role {role} does not have access to {requested}; "
                f"downgraded to {selected}"
            )

        # =====================================================================
        # STAGE 2: MAXIMUM-SAFETY OVERRIDE
        # =====================================================================
        if packet.constraints.safety_mode == SafetyMode.MAXIMUM and packet.constraints.redact_phi:
            if selected != policy.restricted_model:
                reasoning += (
                    f"; maximum safety with PHI redaction forces {policy.restricted_model}"
                )
            selected = policy.restricted_model
            forced_restricted = True

        # =====================================================================
        # STAGE 3: FALLBACK CASCADE
        # =====================================================================
        cascade = self._build_cascade(selected, permitted, forced_restricted)

        # =====================================================================
        # STAGE 4: ESTIMATES AND CLEARANCE
        # =====================================================================
        max_tokens = packet.constraints.max_tokens
        estimated_cost = round(policy.cost_for(selected) * max_tokens / 1000, 6)
        security_clearance = selected in permitted or selected == policy.restricted_model

        decision = RoutingDecision(
            selected_model=selected,
            provider=policy.provider_for(selected),
            reasoning=reasoning,
            fallback_cascade=tuple(cascade),
            security_clearance=security_clearance,
            estimated_cost=estimated_cost,
            estimated_tokens=max_tokens,
            requested_model=requested,
            downgraded=downgraded,
            forced_restricted=forced_restricted,
        )

        logger.info(
            f"Routed | Role: {role} | Requested: {requested} | Selected: {selected} | "
            f"Cascade: {len(cascade)}"
        )
        return decision

    def _build_cascade(self, selected: str, permitted: List[str], forced_restricted: bool) -> List[str]:
        """
        Alternates for the selected model: deduplicated, never the selected
        model itself, and limited to what the caller may use.
        """
        policy = self._policy
        allowed = set(policy.local_only_models) if forced_restricted else set(permitted)
        cascade: List[str] = []
        for model in policy.cascade_for(selected):
            if model == selected or model in cascade:
                continue
            if model in allowed:
                cascade.append(model)
        return cascade
