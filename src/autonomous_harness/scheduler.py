"""Deterministic selection of the next feature to work on."""

from typing import Optional

from .models import Feature, FeatureList, PRIORITY_ORDER


class TaskScheduler:
    """Picks the next eligible feature from a feature list.

    A feature is eligible when it doesn't pass yet, has attempts left and
    every dependency passes. Eligible features are ordered by priority then
    ascending id, so identical list state always yields the same pick.
    Nothing here mutates the list.
    """

    def __init__(self, max_retries: int = 3):
        self.max_retries = max_retries

    def is_exhausted(self, feature: Feature) -> bool:
        """Check if a feature has used up its attempts without passing."""
        return not feature.passes and feature.attempts >= self.max_retries

    def is_eligible(self, feature: Feature, feature_list: FeatureList) -> bool:
        if feature.passes or self.is_exhausted(feature):
            return False
        for dep_id in feature.dependencies:
            dep = feature_list.find_feature(dep_id)
            if dep is None or not dep.passes:
                return False
        return True

    def eligible(self, feature_list: FeatureList) -> list[Feature]:
        """Get all eligible features in scheduling order."""
        candidates = [f for f in feature_list.features if self.is_eligible(f, feature_list)]
        return sorted(candidates, key=lambda f: (PRIORITY_ORDER[f.priority], f.id))

    def pick_next(self, feature_list: FeatureList) -> Optional[Feature]:
        """Get the next feature to work on, or None if nothing is eligible."""
        candidates = self.eligible(feature_list)
        return candidates[0] if candidates else None

    def all_settled(self, feature_list: FeatureList) -> bool:
        """Check if no further progress is possible.

        True when every feature passes or is exhausted, and also when the
        only pending features wait on an exhausted dependency. The graph is
        acyclic, so any pending feature that isn't stranded that way has an
        eligible feature somewhere below it.
        """
        return self.pick_next(feature_list) is None

    def blocked(self, feature_list: FeatureList) -> list[Feature]:
        """Get pending features that are waiting on dependencies."""
        return [
            f for f in feature_list.features
            if not f.passes
            and not self.is_exhausted(f)
            and not self.is_eligible(f, feature_list)
        ]

    def describe_next(self, feature_list: FeatureList) -> str:
        """Preview text for the next task."""
        feature = self.pick_next(feature_list)
        if feature is None:
            if feature_list.is_complete():
                return "All available tasks completed!"
            return "None - remaining features are blocked or exhausted"
        return (
            f"#{feature.id}: {feature.name} "
            f"({feature.priority.value} priority, {feature.estimated_complexity.value} complexity)"
        )
