"""
Geometry module: NURBS patches, multi-patch domains and spline bases.
"""

from .nurbs import NURBSSurface
from .bspline import SplineBasis, TensorBSplineBasis
from .thb import THBBasis
from .multipatch import MultiPatch, Interface
from .primitives import (
    make_nurbs_unit_square,
    make_nurbs_rectangle,
    make_nurbs_quarter_annulus,
    make_l_shape,
)
