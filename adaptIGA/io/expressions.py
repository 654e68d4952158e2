"""
String expressions as vectorised functions of the physical coordinates.

    f = ExpressionFunction("sin(pi*x)*sin(pi*y)")
    f(x, y)            # numpy arrays in, numpy array out
    f.gradient(x, y)   # (n, 2), differentiated symbolically
    f.laplacian(x, y)

Expressions are parsed with sympy; '^' is accepted for powers. Numbers,
strings, sympy expressions and plain callables are all turned into
functions by as_function().
"""

import numpy as np
import sympy as sp
from typing import Callable, Optional, Union

from ..errors import ConfigurationError

X, Y = sp.symbols('x y', real=True)
_LOCALS = {'x': X, 'y': Y, 'pi': sp.pi, 'e': sp.E, 'atan2': sp.atan2}


class ExpressionFunction:
    """
    Scalar function f(x, y) defined by a symbolic expression.

    Attributes:
        expr: The sympy expression
        text: The source string (or str(expr))
    """

    def __init__(self, expression: Union[str, float, int, sp.Expr]):
        if isinstance(expression, sp.Expr):
            self.expr = expression
        else:
            text = str(expression).replace('^', '**')
            try:
                self.expr = sp.sympify(text, locals=_LOCALS)
            except (sp.SympifyError, SyntaxError, TypeError) as exc:
                raise ConfigurationError(f"Cannot parse expression {expression!r}") from exc
        unknown = self.expr.free_symbols - {X, Y}
        if unknown:
            names = ", ".join(sorted(str(s) for s in unknown))
            raise ConfigurationError(f"Expression {expression!r} uses unknown symbols: {names}")
        self.text = str(expression)
        self._f = sp.lambdify((X, Y), self.expr, 'numpy')
        self._grad = None
        self._lap = None

    def __repr__(self) -> str:
        return f"ExpressionFunction({self.text!r})"

    @property
    def constant(self) -> bool:
        return not self.expr.free_symbols

    @staticmethod
    def _evaluate(f, x, y) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        out = np.asarray(f(x, y), dtype=np.float64)
        return np.broadcast_to(out, np.broadcast(x, y).shape).copy()

    def __call__(self, x, y) -> np.ndarray:
        return self._evaluate(self._f, x, y)

    def gradient(self, x, y) -> np.ndarray:
        """(..., 2) gradient (df/dx, df/dy)."""
        if self._grad is None:
            self._grad = [sp.lambdify((X, Y), sp.diff(self.expr, s), 'numpy') for s in (X, Y)]
        return np.stack([self._evaluate(g, x, y) for g in self._grad], axis=-1)

    def laplacian(self, x, y) -> np.ndarray:
        if self._lap is None:
            lap = sp.diff(self.expr, X, 2) + sp.diff(self.expr, Y, 2)
            self._lap = sp.lambdify((X, Y), sp.simplify(lap), 'numpy')
        return self._evaluate(self._lap, x, y)

    def negative_laplacian(self) -> 'ExpressionFunction':
        """-Δf as a new expression (manufactured source terms)."""
        return ExpressionFunction(-(sp.diff(self.expr, X, 2) + sp.diff(self.expr, Y, 2)))


def as_function(value) -> Optional[Callable]:
    """
    Turn a number, string or sympy expression into an ExpressionFunction.

    Callables are returned unchanged, None stays None.
    """
    if value is None or isinstance(value, ExpressionFunction):
        return value
    if isinstance(value, (str, int, float, sp.Expr)):
        return ExpressionFunction(value)
    if callable(value):
        return value
    raise ConfigurationError(f"Cannot use {value!r} as a function of (x, y)")
