"""Per-iteration view of a running solve.

The context is what the optimizers read to decide on a search direction or
on convergence, and what the solver loggers print.
"""

import equinox as eqx
from jaxtyping import Array, Float, Int

from nlpsolve_jax.types import Scalar, Vector


class OptContext(eqx.Module):
    """Snapshot of the solve after the most recent iteration.

    Objective values are those of the fully adapted objective (objective
    plus barrier plus augmented Lagrangian terms), in minimisation form.

    Attributes:
        iteration: Number of iterations performed so far.
        x_current: Current point.
        x_previous: Point of the previous iteration.
        objective_current: Adapted objective value of the current iteration.
        objective_previous: Adapted objective value of the previous iteration.
        objective_grad: Adapted objective gradient used for the last direction.
        direction_scale_factor: Step length accepted by the last line search.
        pure_objective: Objective value of the problem itself at the current
            point, in the caller's sense.
    """

    iteration: Int[Array, ""]
    x_current: Vector
    x_previous: Vector
    objective_current: Scalar
    objective_previous: Scalar
    objective_grad: Float[Array, " n"]
    direction_scale_factor: Scalar
    pure_objective: Scalar
