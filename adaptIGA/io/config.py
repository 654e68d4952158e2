"""
Run configuration files.

A run is described by a YAML file with up to four sections; every key is
optional and falls back to the defaults below:

    problem:
      geometry: l_shape          # l_shape | unit_square | rectangle | quarter_annulus
      geometry_degree: 2
      elements: [1, 1]
      degree: 3                  # basis degree (same breakpoints as the geometry)
      hierarchical: true
      pde: poisson               # poisson | plaplace
      source: "0"
      exact: "sin(pi*x)*sin(pi*y)"  # optional exact solution
      eps: 1.0
      p: 1.8
      boundary_conditions:
        - kind: dirichlet
          boundary: all          # or patch: 0, side: west
          value: exact           # expression, number or "exact"

    assembly:
      dirichlet_strategy: elimination
      interface_strategy: glue
      dirichlet_values: l2_projection

    solver:
      method: lu
      tolerance: 1.0e-12
      max_iterations: 50

    adaptivity:
      initial_refinements: 2
      passes: 2
      estimator: residual
      criterion: 2
      parameter: 0.85

Unknown keys and unknown names raise ConfigurationError.
"""

import logging
import yaml
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ConfigurationError
from .expressions import ExpressionFunction

logger = logging.getLogger(__name__)

GEOMETRIES = ("l_shape", "unit_square", "rectangle", "quarter_annulus")
PDES = ("poisson", "plaplace")


@dataclass
class ProblemConfig:
    geometry: str = "l_shape"
    geometry_degree: int = 2
    elements: Tuple[int, int] = (1, 1)
    x_range: Tuple[float, float] = (0.0, 1.0)
    y_range: Tuple[float, float] = (0.0, 1.0)
    inner_radius: float = 1.0
    outer_radius: float = 2.0
    degree: Optional[int] = 3
    hierarchical: bool = True
    pde: str = "poisson"
    source: Any = "0"
    exact: Optional[str] = None
    coefficient: Any = None
    eps: float = 1.0
    p: float = 1.8
    boundary_conditions: List[Dict[str, Any]] = field(
        default_factory=lambda: [{"kind": "dirichlet", "boundary": "all", "value": "exact"}])

    def __post_init__(self):
        if self.geometry not in GEOMETRIES:
            raise ConfigurationError(
                f"Unknown geometry '{self.geometry}'; expected one of {GEOMETRIES}")
        if self.pde not in PDES:
            raise ConfigurationError(f"Unknown pde '{self.pde}'; expected one of {PDES}")
        self.elements = tuple(int(n) for n in self.elements)
        self.x_range = tuple(float(v) for v in self.x_range)
        self.y_range = tuple(float(v) for v in self.y_range)


@dataclass
class AssemblyConfig:
    dirichlet_strategy: str = "elimination"
    interface_strategy: str = "glue"
    dirichlet_values: str = "l2_projection"
    quad_a: float = 1.0
    quad_b: int = 1
    nitsche_penalty: Optional[float] = None
    reserve_multiplier: float = 1.0

    def __post_init__(self):
        from ..discretization.boundary import (
            DirichletStrategy, DirichletValues, InterfaceStrategy
        )
        DirichletStrategy.from_name(self.dirichlet_strategy)
        InterfaceStrategy.from_name(self.interface_strategy)
        DirichletValues.from_name(self.dirichlet_values)

    def to_options(self):
        from ..assembly.assembler import AssemblerOptions

        return AssemblerOptions(dirichlet_values=self.dirichlet_values, quad_a=self.quad_a,
                                quad_b=self.quad_b, nitsche_penalty=self.nitsche_penalty,
                                reserve_multiplier=self.reserve_multiplier)


@dataclass
class SolverConfig:
    method: str = "lu"
    tolerance: float = 1e-12
    max_iterations: int = 50
    linear_tolerance: float = 1e-12
    reuse_residual_system: bool = False

    def to_options(self):
        from ..solver.nonlinear import NonlinearOptions

        return NonlinearOptions(tolerance=float(self.tolerance),
                                max_iterations=self.max_iterations,
                                linear_solver=self.method,
                                linear_tolerance=float(self.linear_tolerance),
                                reuse_residual_system=self.reuse_residual_system)


@dataclass
class AdaptivityConfig:
    initial_refinements: int = 2
    passes: int = 2
    estimator: str = "residual"
    criterion: Any = 2
    parameter: float = 0.85

    def __post_init__(self):
        from ..adaptivity.estimators import EstimatorKind
        from ..adaptivity.marking import MarkingCriterion

        EstimatorKind.from_name(self.estimator)
        MarkingCriterion.from_name(self.criterion)
        if not 0.0 <= float(self.parameter) <= 1.0:
            raise ConfigurationError(f"Marking parameter must lie in [0, 1], got {self.parameter}")
        if self.initial_refinements < 0 or self.passes < 1:
            raise ConfigurationError("initial_refinements must be >= 0 and passes >= 1")


@dataclass
class RunConfig:
    problem: ProblemConfig = field(default_factory=ProblemConfig)
    assembly: AssemblyConfig = field(default_factory=AssemblyConfig)
    solver: SolverConfig = field(default_factory=SolverConfig)
    adaptivity: AdaptivityConfig = field(default_factory=AdaptivityConfig)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("elements", "x_range", "y_range"):
            data["problem"][key] = list(data["problem"][key])
        return data


_SECTIONS = {
    "problem": ProblemConfig,
    "assembly": AssemblyConfig,
    "solver": SolverConfig,
    "adaptivity": AdaptivityConfig,
}


def _section(cls, data: Optional[Dict[str, Any]], name: str):
    data = {} if data is None else data
    if not isinstance(data, dict):
        raise ConfigurationError(f"Section '{name}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown keys in section '{name}': {', '.join(unknown)}")
    return cls(**data)


def config_from_dict(data: Optional[Dict[str, Any]]) -> RunConfig:
    """Build a RunConfig from a (parsed YAML) mapping."""
    data = {} if data is None else data
    if not isinstance(data, dict):
        raise ConfigurationError("A run configuration must be a mapping")
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ConfigurationError(f"Unknown configuration sections: {', '.join(unknown)}")
    return RunConfig(**{name: _section(cls, data.get(name), name)
                        for name, cls in _SECTIONS.items()})


def load_config(path) -> RunConfig:
    """
    Load a run configuration from a YAML file.

    Raises:
        ConfigurationError: missing file, invalid YAML or invalid settings
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}") from exc
    logger.debug("Loaded configuration from %s", path)
    return config_from_dict(data)


def save_config(config: RunConfig, path) -> None:
    """Write a run configuration as YAML."""
    Path(path).write_text(yaml.safe_dump(config.to_dict(), sort_keys=False))


# ----------------------------------------------------------------------
# Problem setup
# ----------------------------------------------------------------------

# Exact solution of the L-shaped domain example, r^(2/3) sin((2 theta - pi) / 3)
L_SHAPE_EXACT = ("Piecewise(((x**2 + y**2)**(1/3) * sin((2*atan2(y, x) - pi)/3), y > 0), "
                 "((x**2 + y**2)**(1/3) * sin((2*atan2(y, x) + 3*pi)/3), True))")


def _build_geometry(problem: ProblemConfig):
    from ..geometry.multipatch import MultiPatch
    from ..geometry.primitives import (
        make_l_shape, make_nurbs_quarter_annulus, make_nurbs_rectangle, make_nurbs_unit_square
    )

    if problem.geometry == "l_shape":
        return make_l_shape(problem.geometry_degree, problem.elements[0])
    if problem.geometry == "unit_square":
        surface = make_nurbs_unit_square(problem.geometry_degree, *problem.elements)
    elif problem.geometry == "rectangle":
        surface = make_nurbs_rectangle(problem.x_range, problem.y_range,
                                       problem.geometry_degree, *problem.elements)
    else:
        surface = make_nurbs_quarter_annulus(problem.inner_radius, problem.outer_radius)
    return MultiPatch.single(surface)


def _boundary_conditions(problem: ProblemConfig, patches, exact):
    from ..discretization.boundary import BoundaryConditions

    bcs = BoundaryConditions()
    for entry in problem.boundary_conditions:
        entry = dict(entry)
        kind = entry.pop("kind", "dirichlet")
        value = entry.pop("value", 0.0)
        if value == "exact":
            if exact is None:
                raise ConfigurationError("Boundary value 'exact' needs problem.exact")
            value = exact
        function = ExpressionFunction(value) if not isinstance(value, ExpressionFunction) else value
        if entry.get("boundary") == "all":
            entry.pop("boundary")
            sides = patches.boundaries()
        else:
            try:
                sides = [(int(entry.pop("patch", 0)), entry.pop("side"))]
            except KeyError:
                raise ConfigurationError(
                    f"Boundary condition {entry} needs 'boundary: all' or a side") from None
        if entry:
            raise ConfigurationError(f"Unknown boundary condition keys: {', '.join(sorted(entry))}")
        for patch, side in sides:
            bcs.add(patch, side, kind, function)
    return bcs


def setup_problem_from_config(config: RunConfig):
    """
    Build the PDE descriptor and the discretization of a run.

    Returns:
        (pde, bases): PoissonPde or LinearizedPLaplacePde, and a MultiBasis
        with the initial uniform refinements applied
    """
    from ..discretization.multibasis import MultiBasis
    from ..solver.pde import LinearizedPLaplacePde, PoissonPde

    problem = config.problem
    patches = _build_geometry(problem)
    exact_text = problem.exact
    if exact_text is None and problem.geometry == "l_shape" and problem.pde == "poisson":
        exact_text = L_SHAPE_EXACT
    exact = None if exact_text is None else ExpressionFunction(exact_text)
    bcs = _boundary_conditions(problem, patches, exact)

    if problem.pde == "poisson":
        pde = PoissonPde(patches, bcs, problem.source, problem.coefficient)
    else:
        pde = LinearizedPLaplacePde(patches, bcs, problem.source, problem.eps, problem.p)
    pde.exact = exact

    bases = MultiBasis.from_geometry(patches, problem.hierarchical, problem.degree,
                                     config.adaptivity.initial_refinements)
    logger.info("Set up %s on %s: %d patches, %d functions", problem.pde, problem.geometry,
                len(patches), bases.total_functions())
    return pde, bases
