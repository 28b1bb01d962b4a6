# irfpy/__init__.py
"""
irfpy: iterative Random Forests in Python (scikit-learn style).

Exports:
    - WeightedRandomForestClassifier / WeightedRandomForestRegressor
    - read_forest
    - RandomIntersectionTrees, rit
    - irf, IterativeRandomForest, StabilitySelector, RITParams
"""
import logging

from .exceptions import (DimensionMismatch, EmptyFeatureSetCollection, IRFError,
                         InvalidWeightVector, ReplicateFailure)
from .forest import WeightedRandomForestClassifier, WeightedRandomForestRegressor
from .iterative import (IRFResult, IterativeRandomForest, RITParams, StabilityResult,
                  StabilitySelector, irf)
from .paths import DecisionPathRecord, ForestPaths, read_forest
from .rit import Interaction, RandomIntersectionTrees, from_one_based, rit, to_one_based
from .weights import update_weights

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "WeightedRandomForestClassifier", "WeightedRandomForestRegressor",
    "read_forest", "ForestPaths", "DecisionPathRecord",
    "RandomIntersectionTrees", "rit", "Interaction", "to_one_based", "from_one_based",
    "irf", "IRFResult", "IterativeRandomForest", "StabilitySelector", "StabilityResult",
    "RITParams", "update_weights",
    "IRFError", "DimensionMismatch", "InvalidWeightVector", "EmptyFeatureSetCollection",
    "ReplicateFailure",
]
__version__ = "0.1.0"
