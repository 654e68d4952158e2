"""
Adaptivity module: error indicators, marking and refinement.
"""

from .estimators import EstimatorKind, estimate, residual_estimate
from .marking import MarkingCriterion, mark
from .refinement import (
    Transfer,
    refine,
    uniform_refine,
    adapt,
    AdaptiveRefinementController,
    RefinementRecord,
)
