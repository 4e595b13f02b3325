"""Execution plans handed to the implementer.

Every feature gets the same three-phase shape: Analyze, Implement, then one
Validate step per validation check. The harness only builds the plan; it
never runs the phases itself, so the parallel flag and timeouts are hints
for whoever does.
"""

from typing import Optional

from .model_selector import ModelSelector
from .models import ExecutionPlan, Feature, ModelTier, PlanPhase, PlanStep

ANALYZE_TIMEOUT_MS = 30_000
IMPLEMENT_TIMEOUT_MS = 120_000
VALIDATE_TIMEOUT_MS = 60_000

# Phase index after which the implementer should checkpoint (after Implement)
IMPLEMENT_CHECKPOINT = 1


class ExecutionPlanner:
    """Builds phase-based execution plans for features."""

    def __init__(self, model_selector: Optional[ModelSelector] = None):
        self.model_selector = model_selector or ModelSelector()

    def build(self, feature: Feature) -> ExecutionPlan:
        analyze = PlanPhase(
            name="Analyze",
            steps=[PlanStep(
                id="analyze_1",
                action="analyze",
                params={"target": feature.name, "context": feature.description},
                max_retries=1,
                model=ModelTier.HAIKU,
            )],
            parallel=False,
            timeout_ms=ANALYZE_TIMEOUT_MS,
        )

        implement_params = {
            "feature": feature.name,
            "description": feature.description,
            "category": feature.category.value,
        }
        if feature.last_error:
            implement_params["previous_error"] = feature.last_error

        implement = PlanPhase(
            name="Implement",
            steps=[PlanStep(
                id="implement_1",
                action="generate_content",
                params=implement_params,
                max_retries=2,
                model=self.model_selector.select_tier(feature),
            )],
            parallel=False,
            timeout_ms=IMPLEMENT_TIMEOUT_MS,
        )

        validate = PlanPhase(
            name="Validate",
            steps=[
                PlanStep(
                    id=f"validate_{i}",
                    action="validate",
                    params={"check": step},
                    max_retries=1,
                    model=ModelTier.HAIKU,
                )
                for i, step in enumerate(feature.validation_steps)
            ],
            parallel=True,
            timeout_ms=VALIDATE_TIMEOUT_MS,
        )

        return ExecutionPlan(
            id=f"plan_feature_{feature.id}",
            feature_id=feature.id,
            goal=feature.description,
            phases=[analyze, implement, validate],
            checkpoints=[IMPLEMENT_CHECKPOINT],
        )
