"""
Clinical Workflows - Named Multi-Step Protocols

A workflow is an ordered chain of steps, each executed through the normal
single-call contract. Steps share one session, so later steps see the
previous step's output in their context window. Execution stops at the
first failed step and keeps every completed result.

Usage:
    workflow = BUILTIN_WORKFLOWS["tumor_board_prep"]
    workflow.permits("oncologist")     # True
    workflow.permits("nurse")          # False
"""

from dataclasses import dataclass, field
from typing import Dict, Tuple

from clinical_ai_gateway.core.enums import TaskKind, UserRole


@dataclass(frozen=True)
class WorkflowStep:
    """
    One step of a workflow.

    Attributes:
        id: Stable step identifier
        prompt_template: Instruction prepended to the caller's input
        expected_input: Kind of data the step expects (informational)
        validation_rules: Checks a reviewer applies to the step output
            (informational; not enforced by the gateway)
        task: Task kind the step request is sent as
    """

    id: str
    name: str
    prompt_template: str
    expected_input: str = ""
    validation_rules: Tuple[str, ...] = ()
    task: TaskKind = TaskKind.CLINICAL_DECISION

    def render_input(self, caller_input: str) -> str:
        return f"{self.prompt_template}\n\nContext: {caller_input}"


@dataclass(frozen=True)
class ClinicalWorkflow:
    name: str
    description: str
    steps: Tuple[WorkflowStep, ...]
    required_roles: Tuple[str, ...] = field(default_factory=tuple)
    estimated_time_ms: int = 0

    def permits(self, role: str) -> bool:
        return (role or "").strip().lower() in {r.lower() for r in self.required_roles}


TUMOR_BOARD_PREP = ClinicalWorkflow(
    name="Tumor Board Preparation",
    description="Comprehensive analysis for tumor board presentation",
    steps=(
        WorkflowStep(
            id="patient_summary",
            name="Patient Summary",
            prompt_template="Create a concise patient summary for tumor board review",
            expected_input="patient_data",
            validation_rules=("require_demographics", "require_diagnosis"),
        ),
        WorkflowStep(
            id="genomic_analysis",
            name="Genomic Analysis",
            prompt_template="Analyze genomic findings and therapeutic implications",
            expected_input="genomic_data",
            validation_rules=("require_mutations", "require_classification"),
        ),
        WorkflowStep(
            id="treatment_options",
            name="Treatment Recommendations",
            prompt_template="Provide evidence-based treatment recommendations",
            expected_input="clinical_genomic_data",
            validation_rules=("require_evidence_level", "require_safety_profile"),
        ),
    ),
    required_roles=(UserRole.CLINICIAN.value, UserRole.ONCOLOGIST.value),
    estimated_time_ms=180_000,
)

BUILTIN_WORKFLOWS: Dict[str, ClinicalWorkflow] = {
    "tumor_board_prep": TUMOR_BOARD_PREP,
}
