"""
Exception hierarchy for adaptIGA.

Three families of failures are distinguished:

- Configuration errors: the problem set-up is inconsistent (basis and
  geometry disagree, an index has no DOF classification, an interface is
  not conforming, a system was never reserved, a mapper belongs to an
  older basis). These are raised where they are detected and are never
  retried.
- Linear-solve failures: the external sparse solver could not produce a
  solution (singular matrix, CG breakdown). Raised from the solver call.
- Non-convergence of the fixed-point iteration is NOT an exception; it is
  reported through FixedPointResult.converged.

ConfigurationError derives from ValueError and LinearSolverError from
RuntimeError, so callers that only know the builtin types still catch them.
"""


class IGAError(Exception):
    """Base class of all adaptIGA errors."""


class ConfigurationError(IGAError, ValueError):
    """The problem description is inconsistent or incomplete."""


class GeometryMismatchError(ConfigurationError):
    """Geometry and basis disagree (patch count, dimension, point grid)."""


class UnmappedDofError(ConfigurationError, KeyError):
    """A (patch, basis function) pair has no DOF classification."""

    def __str__(self):
        # KeyError would print the repr of the message
        return str(self.args[0]) if self.args else ""


class NonConformingInterfaceError(ConfigurationError):
    """Two glued patch sides do not carry matching traces."""


class MissingReservationError(ConfigurationError):
    """A sparse system was finalized without a nonzero reservation."""


class StaleBasisError(ConfigurationError):
    """A DOF mapper is used with a basis that has been refined since."""


class LinearSolverError(IGAError, RuntimeError):
    """The sparse linear solver failed for the assembled system."""
