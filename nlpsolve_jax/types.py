"""Type definitions for nlpsolve-jax.

This module contains the type aliases and the small records that describe
a nonlinear program: its dimensions, objective sense and variable bounds.
Array types use jaxtyping so they can be checked at runtime with beartype.
"""

import enum
import math
from collections.abc import Callable

import equinox as eqx
from jaxtyping import Array, Float

# Type aliases for common array shapes
Scalar = Float[Array, ""]
Vector = Float[Array, " n"]

# Objective function type: takes a point, returns a scalar
ObjectiveFn = Callable[[Vector], Scalar]

# Jacobian type: row j is the gradient of constraint j
Jacobian = Float[Array, "m n"]


class ObjectiveSense(enum.Enum):
    """Whether the objective is minimised or maximised."""

    MIN = "Min"
    MAX = "Max"

    def __str__(self) -> str:
        return self.value

    @property
    def sign(self) -> float:
        """Factor that turns the objective into one to be minimised."""
        return 1.0 if self is ObjectiveSense.MIN else -1.0


class NLPInfo(eqx.Module):
    """Fixed dimensions of a nonlinear program.

    Attributes:
        num_variables: Number of decision variables (at least 1).
        num_inequality_constraints: Number of constraints g(x) <= 0.
        num_equality_constraints: Number of constraints h(x) = 0.
        sense: Whether the objective is minimised or maximised.
    """

    num_variables: int = eqx.field(static=True)
    num_inequality_constraints: int = eqx.field(static=True, default=0)
    num_equality_constraints: int = eqx.field(static=True, default=0)
    sense: ObjectiveSense = eqx.field(static=True, default=ObjectiveSense.MIN)

    def __check_init__(self):
        if self.num_variables < 1:
            raise ValueError(
                f"num_variables must be at least 1, got {self.num_variables}"
            )
        if self.num_inequality_constraints < 0 or self.num_equality_constraints < 0:
            raise ValueError("Constraint counts must be non-negative")

    def __str__(self) -> str:
        return (
            f"number of variables: {self.num_variables}\n"
            f"number of inequality constraints: {self.num_inequality_constraints}\n"
            f"number of equality constraints: {self.num_equality_constraints}\n"
            f"objective sense: {self.sense}"
        )


class VariableBounds(eqx.Module):
    """Lower and upper bound of a single variable.

    Either side may be infinite, in which case it does not contribute to
    the barrier.
    """

    lb: float = eqx.field(static=True, default=-math.inf)
    ub: float = eqx.field(static=True, default=math.inf)

    def __check_init__(self):
        if math.isnan(self.lb) or math.isnan(self.ub):
            raise ValueError("Variable bounds must not be NaN")
        if self.lb > self.ub:
            raise ValueError(
                f"Lower bound {self.lb} is larger than upper bound {self.ub}"
            )

    def __str__(self) -> str:
        return f"({self.lb}, {self.ub})"
