"""
Assembly module: element evaluation, visitors, sparse systems and the
global assembler.
"""

from .evaluator import ElementData, evaluate_element, evaluate_side
from .visitors import (
    VisitorKind,
    Visitor,
    MassVisitor,
    StiffnessVisitor,
    MomentVisitor,
    NonlinearFluxVisitor,
    NeumannVisitor,
    NitscheVisitor,
    make_visitor,
)
from .sparse_system import SparseSystem, estimate_nnz_per_row
from .assembler import Assembler, AssemblerOptions, AssembledSystem, assemble
