"""Problem interface for nonlinear programs.

A caller describes a problem by subclassing :class:`NLP` and implementing
``info``, ``bounds``, ``objective``, ``grad_objective`` and
``initial_guess``. Constrained problems additionally override the
constraint residual and gradient methods, which default to "no
constraints".

The methods should be written with ``jax.numpy`` so that the solver can
trace them under ``jit``. They must be pure functions of the point.

Example:
    >>> import jax.numpy as jnp
    >>> from nlpsolve_jax import NLP, NLPInfo, VariableBounds
    >>>
    >>> class MinXSquared(NLP):
    ...     def info(self):
    ...         return NLPInfo(num_variables=1)
    ...
    ...     def bounds(self):
    ...         return [VariableBounds(lb=1.1, ub=3.213)]
    ...
    ...     def objective(self, x):
    ...         return x[0] ** 2
    ...
    ...     def grad_objective(self, x):
    ...         return 2.0 * x
    ...
    ...     def initial_guess(self):
    ...         return jnp.array([2.0])
"""

import abc
from collections.abc import Sequence

import equinox as eqx
import jax.numpy as jnp
from jaxtyping import Array, Float

from nlpsolve_jax.logging import get_logger
from nlpsolve_jax.types import Jacobian, NLPInfo, Scalar, VariableBounds, Vector

logger = get_logger(__name__)


class NLP(eqx.Module):
    """Read-only description of a nonlinear program.

    Inequality constraints are satisfied when ``g(x) <= 0`` and equality
    constraints when ``h(x) = 0``. Constraint gradients are returned as a
    Jacobian with one row per constraint.
    """

    @abc.abstractmethod
    def info(self) -> NLPInfo:
        """Dimensions and objective sense of the problem."""

    @abc.abstractmethod
    def bounds(self) -> Sequence[VariableBounds]:
        """One bound pair per variable."""

    @abc.abstractmethod
    def objective(self, x: Vector) -> Scalar:
        """Objective value at ``x``."""

    @abc.abstractmethod
    def grad_objective(self, x: Vector) -> Vector:
        """Gradient of the objective at ``x``."""

    @abc.abstractmethod
    def initial_guess(self) -> Vector:
        """Starting point; must lie strictly inside the finite bounds."""

    def inequality_constraints(self, x: Vector) -> Float[Array, " m_ineq"]:
        return jnp.zeros((0,), dtype=jnp.result_type(x))

    def grad_inequality_constraints(self, x: Vector) -> Jacobian:
        return jnp.zeros((0, x.shape[0]), dtype=jnp.result_type(x))

    def equality_constraints(self, x: Vector) -> Float[Array, " m_eq"]:
        return jnp.zeros((0,), dtype=jnp.result_type(x))

    def grad_equality_constraints(self, x: Vector) -> Jacobian:
        return jnp.zeros((0, x.shape[0]), dtype=jnp.result_type(x))


def check_nlp(nlp: NLP) -> None:
    """Validate that ``bounds`` and ``initial_guess`` match the dimension.

    Raises:
        ValueError: If either has the wrong length.
    """
    n = nlp.info().num_variables
    n_bounds = len(nlp.bounds())
    if n_bounds != n:
        raise ValueError(f"Expected {n} variable bounds, got {n_bounds}")
    x0 = jnp.asarray(nlp.initial_guess())
    if x0.shape != (n,):
        raise ValueError(f"Initial guess must have shape ({n},), got {x0.shape}")


def dump_nlp(nlp: NLP) -> None:
    """Log the problem information and the bounds of every variable."""
    logger.info("NLP information:\n%s", nlp.info())

    for v, b in enumerate(nlp.bounds()):
        logger.info("bounds for variable no. %d: %s", v, b)
