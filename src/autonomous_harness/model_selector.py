"""Model tier hints for execution plans.

Picks the tier suggested for a feature's Implement phase based on its
complexity estimate, category, dependencies, keywords and how many attempts
it has already burned. The hint is advisory; the implementer decides.
"""

from .models import Complexity, Feature, FeatureCategory, ModelTier

# Keywords that indicate complex tasks
COMPLEXITY_KEYWORDS = [
    "architecture",
    "migration",
    "security",
    "authentication",
    "authorization",
    "encryption",
    "oauth",
    "jwt",
    "performance",
    "concurrency",
    "integration",
    "webhook",
    "database schema",
    "data model",
]

# Keywords that indicate simple tasks
SIMPLE_KEYWORDS = [
    "typo",
    "readme",
    "documentation",
    "rename",
    "format",
    "lint",
    "style",
]

COMPLEXITY_SCORES = {
    Complexity.TRIVIAL: -2,
    Complexity.SIMPLE: -1,
    Complexity.MEDIUM: 0,
    Complexity.COMPLEX: 2,
}

COMPLEX_CATEGORIES = [FeatureCategory.INTEGRATION]
SIMPLE_CATEGORIES = [FeatureCategory.SETUP, FeatureCategory.DEPLOY]


class ModelSelector:
    """Selects a model tier based on feature complexity.

    Strategy:
    - Default to Sonnet
    - Escalate to Opus for complex or repeatedly failing features
    - Use Haiku for trivial setup-style work
    """

    def __init__(
        self,
        default_tier: ModelTier = ModelTier.SONNET,
        complex_tier: ModelTier = ModelTier.OPUS,
        simple_tier: ModelTier = ModelTier.HAIKU,
    ):
        self.default_tier = default_tier
        self.complex_tier = complex_tier
        self.simple_tier = simple_tier

    def select_tier(self, feature: Feature) -> ModelTier:
        """Select the Implement-phase tier for a feature."""
        score = self.complexity_score(feature)
        if score >= 3:
            return self.complex_tier
        elif score <= -2:
            return self.simple_tier
        return self.default_tier

    def complexity_score(self, feature: Feature) -> int:
        """Calculate complexity score for a feature.

        Positive scores indicate complex tasks, negative ones simple tasks.
        """
        score = COMPLEXITY_SCORES[feature.estimated_complexity]

        if feature.category in COMPLEX_CATEGORIES:
            score += 1
        elif feature.category in SIMPLE_CATEGORIES:
            score -= 1

        dep_count = len(feature.dependencies)
        if dep_count >= 3:
            score += 2
        elif dep_count >= 1:
            score += 1

        text = f"{feature.name} {feature.description}".lower()
        if any(keyword in text for keyword in COMPLEXITY_KEYWORDS):
            score += 1
        if any(keyword in text for keyword in SIMPLE_KEYWORDS):
            score -= 1

        if len(feature.validation_steps) >= 5:
            score += 1

        # Failed attempts suggest the task is harder than estimated
        if feature.attempts >= 2:
            score += 2
        elif feature.attempts == 1:
            score += 1

        return score

    def explain_selection(self, feature: Feature) -> dict:
        """Explain why a particular tier was selected."""
        tier = self.select_tier(feature)
        reasons = [f"Estimated complexity '{feature.estimated_complexity.value}'"]

        if feature.category in COMPLEX_CATEGORIES:
            reasons.append(f"Category '{feature.category.value}' typically needs more capable model")
        elif feature.category in SIMPLE_CATEGORIES:
            reasons.append(f"Category '{feature.category.value}' can use simpler model")
        if feature.dependencies:
            reasons.append(f"Has {len(feature.dependencies)} dependency(ies)")
        if feature.attempts:
            reasons.append(f"Already failed {feature.attempts} attempt(s)")

        return {
            "tier": tier,
            "complexity_score": self.complexity_score(feature),
            "reasons": reasons,
        }
