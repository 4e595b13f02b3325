"""Generation module for turning an app spec into a feature list.

This module provides tools to:
- Load application spec files (spec_parser.py)
- Decompose a spec into dependency-ordered features (feature_generator.py)
"""

from .spec_parser import SpecParser
from .feature_generator import FeatureListGenerator

__all__ = [
    "SpecParser",
    "FeatureListGenerator",
]
