"""nlpsolve-jax: constrained nonlinear programming in JAX.

This package solves problems of the form

    min (or max) f(x)  subject to  lb <= x <= ub,  g(x) <= 0,  h(x) = 0

by folding the variable bounds into the objective with a log-barrier and
the general constraints with an augmented Lagrangian, and minimising the
result with steepest descent or BFGS and an Armijo-Goldstein line search.
The solver is an Optimistix minimiser and can also be used with
``optx.minimise``.
"""

from nlpsolve_jax.augmented_lagrangian import AugmentedLagrangianConstraintHandler
from nlpsolve_jax.barrier import BarrierBoundsHandler
from nlpsolve_jax.context import OptContext
from nlpsolve_jax.hessian import (
    InverseHessian,
    bfgs_direction,
    bfgs_init,
    bfgs_update,
)
from nlpsolve_jax.line_search import (
    AbstractStepSizeControl,
    ArmijoGoldsteinRule,
    StepResult,
)
from nlpsolve_jax.logging import configure_logging, get_logger, set_log_level
from nlpsolve_jax.nlp import NLP, check_nlp, dump_nlp
from nlpsolve_jax.optimizers import BFGS, AbstractOptimizer, BFGSState, SteepestDescent
from nlpsolve_jax.options import (
    BoundsHandlerOptions,
    ConstraintsHandlerOptions,
    LoggerOptions,
    Options,
    StepSizeControlOptions,
)
from nlpsolve_jax.output import AbstractSolverLogger, StdoutLogger
from nlpsolve_jax.solver import Solution, Solver, SolverState, solve
from nlpsolve_jax.types import NLPInfo, ObjectiveSense, VariableBounds
from nlpsolve_jax.utils import (
    IncompatibleLengthsError,
    add,
    inner_product,
    norm2,
    norm2_sqr,
    scaled,
)

__all__ = [
    # Main solver
    "Solver",
    "SolverState",
    "Solution",
    "solve",
    "OptContext",
    # Problem description
    "NLP",
    "NLPInfo",
    "ObjectiveSense",
    "VariableBounds",
    "check_nlp",
    "dump_nlp",
    # Options
    "Options",
    "StepSizeControlOptions",
    "BoundsHandlerOptions",
    "ConstraintsHandlerOptions",
    "LoggerOptions",
    # Optimizers
    "AbstractOptimizer",
    "SteepestDescent",
    "BFGS",
    "BFGSState",
    # BFGS utilities
    "InverseHessian",
    "bfgs_init",
    "bfgs_update",
    "bfgs_direction",
    # Line search
    "AbstractStepSizeControl",
    "ArmijoGoldsteinRule",
    "StepResult",
    # Handlers
    "BarrierBoundsHandler",
    "AugmentedLagrangianConstraintHandler",
    # Output and logging
    "AbstractSolverLogger",
    "StdoutLogger",
    "get_logger",
    "set_log_level",
    "configure_logging",
    # Vector primitives
    "IncompatibleLengthsError",
    "inner_product",
    "norm2_sqr",
    "norm2",
    "scaled",
    "add",
]
