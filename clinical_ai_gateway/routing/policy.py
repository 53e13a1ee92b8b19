"""
Routing Policy - Declarative Role and Cascade Tables

The role-access matrix, fallback cascade table, provider map and cost table
are data, loaded once at startup. The router reads them; it never encodes
policy as inline conditionals.

Sources:
    RoutingPolicy.default()        → tables from core/constants.py
    RoutingPolicy.from_file(path)  → JSON override merged onto the defaults

JSON Override Format (every key optional):
    {
        "role_model_matrix": {"nurse": ["Claude-Sonnet", "Local-Model"]},
        "fallback_cascade": {"Mistral": ["Local-Model"]},
        "cost_per_1k_tokens": {"Mistral": 0.001},
        "restricted_model": "Local-Model",
        "local_only_models": ["Local-Model"]
    }
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Union

from loguru import logger

from clinical_ai_gateway.core.constants import (
    COST_PER_1K_TOKENS,
    FALLBACK_CASCADE,
    LOCAL_ONLY_MODELS,
    MODEL_PROVIDERS,
    RESTRICTED_MODEL,
    ROLE_MODEL_MATRIX,
)
from clinical_ai_gateway.core.enums import ModelFamily, UserRole
from clinical_ai_gateway.core.exceptions import ConfigurationError


@dataclass
class RoutingPolicy:
    """
    Static routing configuration.

    Attributes:
        role_model_matrix: Role → ordered permitted families (first = highest
            priority, used for downgrades)
        fallback_cascade: Model → ordered alternates tried on failure
        model_providers: Model → provider name
        local_only_models: Models that never leave the trusted boundary
        restricted_model: Most restrictive model (unknown roles, maximum
            safety with PHI redaction)
        cost_per_1k_tokens: Illustrative per-model cost
    """

    role_model_matrix: Dict[str, List[str]] = field(default_factory=dict)
    fallback_cascade: Dict[str, List[str]] = field(default_factory=dict)
    model_providers: Dict[str, str] = field(default_factory=dict)
    local_only_models: List[str] = field(default_factory=list)
    restricted_model: str = RESTRICTED_MODEL
    cost_per_1k_tokens: Dict[str, float] = field(default_factory=dict)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def permitted_models(self, role: str) -> List[str]:
        """Permitted families for a role; empty when the role is not in the matrix."""
        return list(self.role_model_matrix.get(role, []))

    def cascade_for(self, model: str) -> List[str]:
        return list(self.fallback_cascade.get(model, []))

    def provider_for(self, model: str) -> str:
        return self.model_providers.get(model, "unknown")

    def cost_for(self, model: str) -> float:
        return self.cost_per_1k_tokens.get(model, 0.0)

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate(self) -> "RoutingPolicy":
        """
        Check every table references known roles and model families.

        Raises:
            ConfigurationError: On any unknown name
        """
        known_models = set(ModelFamily.values())
        known_roles = set(UserRole.values())
        problems = []

        for role, models in self.role_model_matrix.items():
            if role not in known_roles:
                problems.append(f"unknown role '{role}' in role_model_matrix")
            problems.extend(
                f"unknown model '{m}' for role '{role}'" for m in models if m not in known_models
            )

        for model, alternates in self.fallback_cascade.items():
            if model not in known_models:
                problems.append(f"unknown model '{model}' in fallback_cascade")
            problems.extend(
                f"unknown alternate '{m}' for '{model}'" for m in alternates if m not in known_models
            )

        if self.restricted_model not in known_models:
            problems.append(f"unknown restricted_model '{self.restricted_model}'")
        problems.extend(
            f"unknown local-only model '{m}'" for m in self.local_only_models if m not in known_models
        )
        problems.extend(
            f"unknown model '{m}' in cost table" for m in self.cost_per_1k_tokens if m not in known_models
        )

        if problems:
            raise ConfigurationError(
                "Invalid routing policy", context={"problems": "; ".join(problems)}
            )
        return self

    # -------------------------------------------------------------------------
    # Factory Methods
    # -------------------------------------------------------------------------

    @classmethod
    def default(cls) -> "RoutingPolicy":
        return cls(
            role_model_matrix={k: list(v) for k, v in ROLE_MODEL_MATRIX.items()},
            fallback_cascade={k: list(v) for k, v in FALLBACK_CASCADE.items()},
            model_providers=dict(MODEL_PROVIDERS),
            local_only_models=list(LOCAL_ONLY_MODELS),
            restricted_model=RESTRICTED_MODEL,
            cost_per_1k_tokens=dict(COST_PER_1K_TOKENS),
        )

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "RoutingPolicy":
        """
        Load a JSON override and merge it onto the default tables.

        Tables in the file replace the default entry per key (a role listed
        in the file replaces that role's list; unlisted roles keep theirs).

        Raises:
            ConfigurationError: If the file is unreadable or references
                unknown roles/models
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                overrides = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Cannot load routing policy: {e}", context={"path": str(path)}
            ) from e

        if not isinstance(overrides, dict):
            raise ConfigurationError("Routing policy must be a JSON object", context={"path": str(path)})

        policy = cls.default()
        policy.role_model_matrix.update(overrides.get("role_model_matrix", {}))
        policy.fallback_cascade.update(overrides.get("fallback_cascade", {}))
        policy.cost_per_1k_tokens.update(overrides.get("cost_per_1k_tokens", {}))
        if "restricted_model" in overrides:
            policy.restricted_model = overrides["restricted_model"]
        if "local_only_models" in overrides:
            policy.local_only_models = list(overrides["local_only_models"])

        policy.validate()
        logger.info(f"Routing policy loaded | Path: {path} | Roles: {len(policy.role_model_matrix)}")
        return policy
