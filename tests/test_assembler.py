"""
Tests for element evaluation, visitors and global assembly.
"""

import pytest
import numpy as np
from numpy.testing import assert_almost_equal, assert_array_almost_equal

from adaptIGA.assembly import Assembler, AssemblerOptions, assemble
from adaptIGA.assembly.evaluator import evaluate_element, evaluate_points, evaluate_side
from adaptIGA.assembly.visitors import (
    MassVisitor, StiffnessVisitor, VisitorKind, default_nitsche_penalty, make_visitor,
    plaplace_coefficient
)
from adaptIGA.discretization.boundary import (
    BoundaryConditions, DirichletStrategy, InterfaceStrategy, Side
)
from adaptIGA.discretization.multibasis import MultiBasis
from adaptIGA.errors import ConfigurationError, GeometryMismatchError, StaleBasisError
from adaptIGA.geometry import (
    MultiPatch, make_l_shape, make_nurbs_quarter_annulus, make_nurbs_rectangle,
    make_nurbs_unit_square
)
from adaptIGA.postprocess.norms import l2_error
from adaptIGA.quadrature.gauss import GaussQuadrature
from adaptIGA.solver.linear import solve_linear
from adaptIGA.solver.pde import PoissonPde


def unit_square(p=2, n_elem=2, degree=None):
    patches = MultiPatch.single(make_nurbs_unit_square(p=p, n_elem_xi=n_elem, n_elem_eta=n_elem))
    return patches, MultiBasis.from_geometry(patches, hierarchical=False, degree=degree)


def solve(assembler):
    system = assembler.assemble()
    return assembler.construct_solution(solve_linear(system.matrix, system.rhs))


class DroppingSurface:
    """Geometry whose mapping loses the last evaluation point."""

    def __init__(self, surface):
        self.surface = surface

    def eval_mapping(self, params, second=False):
        return tuple(a[:-1] for a in self.surface.eval_mapping(params, second))


class TestElementEvaluation:
    """Basis and geometry data on single elements."""

    def test_unit_square_weights(self):
        """Quadrature weights of all elements sum to the area."""
        patches, bases = unit_square()
        total = 0.0
        for element in bases[0].elements():
            data = evaluate_element(bases[0], patches[0], element,
                                    GaussQuadrature.for_degree(element.degrees))
            total += data.measure
        assert_almost_equal(total, 1.0)

    def test_partition_of_unity(self):
        """Active functions sum to one and their gradients to zero."""
        patches, bases = unit_square()
        element = bases[0].elements()[1]
        data = evaluate_element(bases[0], patches[0], element,
                                GaussQuadrature.for_degree(element.degrees))

        assert data.values.shape == (9, 9)
        assert data.gradients.shape == (9, 9, 2)
        assert_array_almost_equal(data.values.sum(axis=0), 1.0)
        assert_array_almost_equal(data.gradients.sum(axis=0), 0.0)

    def test_physical_gradient_of_linear_field(self):
        """Greville coefficients reproduce x with gradient (1, 0)."""
        surface = make_nurbs_rectangle((0.0, 2.0), (0.0, 1.0), 2, 2, 2)
        patches = MultiPatch.single(surface)
        bases = MultiBasis.from_geometry(patches, hierarchical=False)
        element = bases[0].elements()[3]
        data = evaluate_element(bases[0], patches[0], element,
                                GaussQuadrature.for_degree(element.degrees))
        x_coeffs = surface.control_points[:, 0]

        assert_array_almost_equal(data.interpolate(x_coeffs[data.actives]), data.points[:, 0])
        grad = data.interpolate_gradient(x_coeffs[data.actives])
        assert_array_almost_equal(grad, np.tile([1.0, 0.0], (data.n_points, 1)))

    def test_laplacians_of_quadratic(self):
        """x^2 + y^2 interpolated exactly has Laplacian 4."""
        patches, bases = unit_square()
        element = bases[0].elements()[0]
        data = evaluate_element(bases[0], patches[0], element,
                                GaussQuadrature.for_degree(element.degrees), hessians=True)
        # quadratic B-splines on [0, 1/2, 1]: x^2 has coefficients g_i g_j-products
        kv = bases[0].knot_vectors[0]
        knots = kv.knots
        c = np.array([knots[i + 1] * knots[i + 2] for i in range(kv.n_basis)])
        n = kv.n_basis
        coeffs = np.array([c[k % n] + c[k // n] for k in range(n * n)])

        assert_array_almost_equal(data.interpolate(coeffs[data.actives]),
                                  np.sum(data.points ** 2, axis=1))
        assert_array_almost_equal(coeffs[data.actives] @ data.laplacians, 4.0)

    def test_quarter_annulus_area(self):
        """The rational geometry integrates to pi (R^2 - r^2) / 4."""
        patches = MultiPatch.single(make_nurbs_quarter_annulus(1.0, 2.0))
        bases = MultiBasis.from_geometry(patches, hierarchical=False)
        area = 0.0
        for element in bases[0].elements():
            data = evaluate_element(bases[0], patches[0], element,
                                    GaussQuadrature.for_degree(element.degrees, 1.0, 6))
            area += data.measure
        assert abs(area - 0.75 * np.pi) < 1e-6

    def test_side_data(self):
        """Edge weights integrate the length, normals point outwards."""
        surface = make_nurbs_rectangle((0.0, 2.0), (0.0, 1.0), 2, 1, 1)
        patches = MultiPatch.single(surface)
        bases = MultiBasis.from_geometry(patches, hierarchical=False)
        element = bases[0].elements()[0]
        quadrature = GaussQuadrature.for_degree(element.degrees)

        east = evaluate_side(bases[0], patches[0], element, Side.EAST, quadrature)
        south = evaluate_side(bases[0], patches[0], element, Side.SOUTH, quadrature)

        assert_almost_equal(east.measure, 1.0)
        assert_almost_equal(south.measure, 2.0)
        assert_array_almost_equal(east.normals, np.tile([1.0, 0.0], (east.n_points, 1)))
        assert_array_almost_equal(south.normals, np.tile([0.0, -1.0], (south.n_points, 1)))
        assert_array_almost_equal(east.points[:, 0], 2.0)
        assert east.side is Side.EAST

    def test_evaluate_points(self):
        """Arbitrary reference points map into the element."""
        patches, bases = unit_square()
        element = bases[0].elements()[3]
        data = evaluate_points(bases[0], patches[0], element, [[0.5, 0.5]])

        assert_array_almost_equal(data.points, [[0.75, 0.75]])
        assert_almost_equal(data.weights[0], 0.25)

    def test_geometry_point_count_mismatch(self, square_patches):
        """A geometry returning fewer points than the basis grid is rejected."""
        bases = MultiBasis.from_geometry(square_patches, hierarchical=False)
        element = bases[0].elements()[0]
        quadrature = GaussQuadrature.for_degree(element.degrees)

        with pytest.raises(GeometryMismatchError):
            evaluate_element(bases[0], DroppingSurface(square_patches[0]), element, quadrature)
        with pytest.raises(GeometryMismatchError):
            evaluate_element(bases[0], DroppingSurface(square_patches[0]), element, quadrature,
                             hessians=True)


class TestVisitors:
    """Local assembly."""

    def test_registry(self):
        """Kinds and names map to the registered visitor classes."""
        assert isinstance(make_visitor(VisitorKind.MASS), MassVisitor)
        assert isinstance(make_visitor("mass"), MassVisitor)
        patches, _ = unit_square()
        assert isinstance(make_visitor("stiffness", PoissonPde(patches)), StiffnessVisitor)

        with pytest.raises(ConfigurationError):
            make_visitor("laplace")

    def test_local_mass(self):
        """Local mass entries sum to the element area."""
        patches, bases = unit_square()
        element = bases[0].elements()[0]
        visitor = MassVisitor()
        visitor.evaluate(bases[0], patches[0], element, GaussQuadrature.for_degree(element.degrees))
        visitor.assemble()

        assert visitor.local_matrix.shape == (9, 9)
        assert_almost_equal(visitor.local_matrix.sum(), 0.25)
        assert_array_almost_equal(visitor.local_matrix, visitor.local_matrix.T)

    def test_local_stiffness_kernel(self):
        """Constants lie in the kernel of the local stiffness matrix."""
        patches, bases = unit_square()
        element = bases[0].elements()[2]
        visitor = StiffnessVisitor(PoissonPde(patches, source=1.0))
        visitor.evaluate(bases[0], patches[0], element, GaussQuadrature.for_degree(element.degrees))
        visitor.assemble()

        assert_array_almost_equal(visitor.local_matrix.sum(axis=1), 0.0)
        assert_almost_equal(visitor.local_rhs.sum(), 0.25)

    def test_nitsche_penalty_default(self):
        """2.5 (p+1)^2"""
        assert default_nitsche_penalty(1) == 10.0
        assert default_nitsche_penalty(2) == 22.5

    def test_plaplace_coefficient(self):
        """p = 2 gives one, otherwise (eps^2 + |g|^2)^((p-2)/2)."""
        grad = np.array([[0.0, 0.0], [3.0, 4.0]])

        assert_array_almost_equal(plaplace_coefficient(grad, 1.0, 2.0), [1.0, 1.0])
        assert_array_almost_equal(plaplace_coefficient(grad, 0.0, 4.0), [0.0, 25.0])
        assert_array_almost_equal(plaplace_coefficient(grad, 1.0, 1.0), [1.0, 26.0 ** -0.5])


class TestGlobalMatrices:
    """Mass and stiffness matrices over the free DOFs."""

    def test_degree_zero_mass(self):
        """A single piecewise constant on the unit square has mass one."""
        patches, bases = unit_square(p=1, n_elem=1, degree=0)
        M = Assembler(PoissonPde(patches), bases).assemble_mass()

        assert M.shape == (1, 1)
        assert_almost_equal(M[0, 0], 1.0)

    def test_mass_sums_to_area(self):
        """Glued L-shape functions form a partition of unity over area 3."""
        patches = make_l_shape(p=2, n_elem=2)
        bases = MultiBasis.from_geometry(patches, hierarchical=False)
        M = Assembler(PoissonPde(patches), bases).assemble_mass()

        assert_almost_equal(M.sum(), 3.0)

    def test_stiffness_symmetric_semidefinite(self):
        """Without Dirichlet data the stiffness matrix has the constants as kernel."""
        patches, bases = unit_square()
        system = assemble(PoissonPde(patches, source=1.0), bases)
        K = system.matrix.toarray()

        assert_array_almost_equal(K, K.T)
        assert_array_almost_equal(K @ np.ones(K.shape[0]), 0.0)
        assert np.all(np.linalg.eigvalsh(K) >= -1e-10)
        assert_almost_equal(system.rhs.sum(), 1.0)

    def test_moments(self):
        """Moments of a constant are the column sums of the mass matrix."""
        patches, bases = unit_square()
        assembler = Assembler(PoissonPde(patches), bases)

        M = assembler.assemble_mass()
        b = assembler.assemble_moments(lambda x, y: 2.0 * np.ones_like(x))
        assert_array_almost_equal(b, 2.0 * np.asarray(M.sum(axis=0)).ravel())

    def test_patch_order_invariance(self):
        """The assembled system does not depend on the patch visiting order."""
        patches = make_l_shape(p=2, n_elem=2)
        bases = MultiBasis.from_geometry(patches, hierarchical=False)
        bcs = BoundaryConditions.all_dirichlet(patches.boundaries(), "x*y")
        assembler = Assembler(PoissonPde(patches, bcs, source="1 + x^2"), bases)

        reference = assembler.assemble()
        for order in ([2, 0, 1], [1, 2, 0]):
            other = assembler.assemble(patch_order=order)
            assert_array_almost_equal(other.matrix.toarray(), reference.matrix.toarray(), decimal=12)
            assert_array_almost_equal(other.rhs, reference.rhs, decimal=12)

    def test_invalid_patch_order(self):
        """Patch orders must be permutations."""
        patches = make_l_shape(p=1)
        assembler = Assembler(PoissonPde(patches), MultiBasis.from_geometry(patches))

        with pytest.raises(ConfigurationError):
            assembler.assemble(patch_order=[0, 0, 1])
        with pytest.raises(ConfigurationError):
            assembler.assemble(patch_order=[0, 1])


class TestPoissonSolutions:
    """Manufactured solutions contained in the discrete space."""

    def test_quadratic_exact(self):
        """-lap(x^2 + y^2) = -4 is solved exactly by quadratics."""
        patches, bases = unit_square()
        bcs = BoundaryConditions.all_dirichlet(patches.boundaries(), "x^2 + y^2")
        solution = solve(Assembler(PoissonPde(patches, bcs, source=-4.0), bases))

        assert l2_error(solution, "x^2 + y^2") < 1e-10

    def test_excluded_boundary_values(self):
        """Eliminated functions carry the projected boundary data."""
        patches, bases = unit_square()
        bcs = BoundaryConditions.all_dirichlet(patches.boundaries(), "x + y")
        assembler = Assembler(PoissonPde(patches, bcs), bases)
        system = assembler.assemble()

        assert system.matrix.shape == (4, 4)
        full = system.expand(np.zeros(4))
        greville = patches[0].control_points.sum(axis=1)
        boundary = assembler.mapper.boundary_indices()
        assert_array_almost_equal(full[boundary], greville[boundary])

    def test_homogeneous_values(self):
        """The homogeneous option ignores the Dirichlet data."""
        patches, bases = unit_square()
        bcs = BoundaryConditions.all_dirichlet(patches.boundaries(), "x + y")
        assembler = Assembler(PoissonPde(patches, bcs), bases,
                              options=AssemblerOptions(dirichlet_values="homogeneous"))
        assert_array_almost_equal(assembler.eliminated_values, 0.0)

    def test_nitsche_matches_elimination(self):
        """Weak and strong imposition both reproduce a linear solution."""
        patches, bases = unit_square()
        bcs = BoundaryConditions.all_dirichlet(patches.boundaries(), "x + y")
        pde = PoissonPde(patches, bcs)

        strong = solve(Assembler(pde, bases, DirichletStrategy.ELIMINATION))
        weak_assembler = Assembler(pde, bases, DirichletStrategy.NITSCHE)
        weak = solve(weak_assembler)

        assert weak_assembler.mapper.n_free == 16
        assert l2_error(strong, "x + y") < 1e-10
        assert l2_error(weak, "x + y") < 1e-8

    def test_neumann_side(self):
        """A flux condition du/dn = 1 on the east side."""
        patches, bases = unit_square()
        bcs = BoundaryConditions()
        for side in ("west", "south", "north"):
            bcs.add(0, side, "dirichlet", "x + y")
        bcs.add(0, "east", "neumann", 1.0)
        solution = solve(Assembler(PoissonPde(patches, bcs), bases))

        assert l2_error(solution, "x + y") < 1e-10

    def test_variable_coefficient(self):
        """-div((1 + x) grad(x + y)) = -1."""
        patches, bases = unit_square()
        bcs = BoundaryConditions.all_dirichlet(patches.boundaries(), "x + y")
        pde = PoissonPde(patches, bcs, source=-1.0, coefficient="1 + x")

        assert l2_error(solve(Assembler(pde, bases)), "x + y") < 1e-10

    def test_l_shape_glued(self):
        """A linear field is continuous and exact across both interfaces."""
        patches = make_l_shape(p=2, n_elem=2)
        bases = MultiBasis.from_geometry(patches, hierarchical=False)
        bcs = BoundaryConditions.all_dirichlet(patches.boundaries(), "2*x - y")
        solution = solve(Assembler(PoissonPde(patches, bcs), bases))

        assert l2_error(solution, "2*x - y") < 1e-10

    def test_reversed_interface_continuous(self, reversed_patches):
        """The solution agrees on both sides of a flipped interface."""
        bases = MultiBasis.from_geometry(reversed_patches, hierarchical=False)
        bcs = BoundaryConditions.all_dirichlet(reversed_patches.boundaries(), 0.0)
        assembler = Assembler(PoissonPde(reversed_patches, bcs, source=1.0), bases)
        solution = solve(assembler)
        t = np.linspace(0.0, 1.0, 7)

        assert assembler.mapper.n_free == 10
        left = solution.evaluate(0, np.column_stack([np.ones(7), t]))
        right = solution.evaluate(1, np.column_stack([np.zeros(7), 1.0 - t]))
        assert_array_almost_equal(left, right, decimal=12)
        assert np.max(left) > 1e-3

    def test_reversed_interface_exact(self, reversed_patches):
        """x^2 + y^2 is reproduced across the flipped interface."""
        bases = MultiBasis.from_geometry(reversed_patches, hierarchical=False)
        bcs = BoundaryConditions.all_dirichlet(reversed_patches.boundaries(), "x^2 + y^2")
        solution = solve(Assembler(PoissonPde(reversed_patches, bcs, source=-4.0), bases))

        assert l2_error(solution, "x^2 + y^2") < 1e-10

    def test_l_shape_without_gluing(self):
        """Unglued patches decouple into three independent blocks."""
        patches = make_l_shape(p=1)
        bases = MultiBasis.from_geometry(patches, hierarchical=False)
        system = assemble(PoissonPde(patches), bases, interface_strategy=InterfaceStrategy.NONE)

        assert system.n_free == 12
        assert system.matrix[0, 4] == 0.0


class TestAssemblerErrors:
    """Invalid setups."""

    def test_patch_count_mismatch(self):
        """A single-patch basis cannot assemble on the L-shape."""
        _, bases = unit_square()
        with pytest.raises(GeometryMismatchError):
            Assembler(PoissonPde(make_l_shape()), bases)

    def test_condition_on_interface(self):
        """Interface sides cannot carry boundary conditions."""
        patches = make_l_shape(p=1)
        bcs = BoundaryConditions().add(0, "south", "dirichlet", 0.0)
        with pytest.raises(ConfigurationError):
            Assembler(PoissonPde(patches, bcs), MultiBasis.from_geometry(patches))

    def test_condition_on_unknown_patch(self):
        """Patch indices must exist."""
        patches, bases = unit_square()
        bcs = BoundaryConditions().add(3, "west", "dirichlet", 0.0)
        with pytest.raises(ConfigurationError):
            Assembler(PoissonPde(patches, bcs), bases)

    def test_stale_basis(self):
        """Refining after construction invalidates the assembler."""
        patches, bases = unit_square()
        assembler = Assembler(PoissonPde(patches), bases)
        bases.uniform_refine()

        with pytest.raises(StaleBasisError):
            assembler.assemble()

    def test_invalid_options(self):
        """Options are validated on construction."""
        with pytest.raises(ConfigurationError):
            AssemblerOptions(quad_a=-1.0)
        with pytest.raises(ConfigurationError):
            AssemblerOptions(nitsche_penalty=0.0)
        with pytest.raises(ConfigurationError):
            AssemblerOptions(reserve_multiplier=0.0)
        with pytest.raises(ConfigurationError):
            AssemblerOptions(dirichlet_values="interpolation")
