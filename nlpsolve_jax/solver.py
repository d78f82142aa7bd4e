"""Constrained NLP solver implementation using Optimistix.

This module contains the solver class that extends
optimistix.AbstractMinimiser. Each iteration

1. evaluates the constraint residuals at the current point,
2. builds the gradient of the adapted objective (objective, then log-barrier
   for the variable bounds, then augmented Lagrangian for the constraints),
3. asks the optimizer (steepest descent or BFGS) for a search direction,
4. runs the line search on the adapted objective,
5. anneals the barrier parameter and updates the multipliers from the
   residuals at the new point.

The solve stops when the optimizer reports that the adapted objective has
settled, or when the search direction is flat. Maximisation problems are
negated on the way in, so everything below the solver minimises.

The solver can be driven either by :meth:`Solver.solve`, which returns a
:class:`Solution`, or by ``optx.minimise``.
"""

import functools
from collections.abc import Callable, Sequence
from typing import Any, Optional

import equinox as eqx
import jax
import jax.numpy as jnp
import numpy as np
import optimistix as optx
from jaxtyping import Array, Bool, Float

from nlpsolve_jax.augmented_lagrangian import AugmentedLagrangianConstraintHandler
from nlpsolve_jax.barrier import BarrierBoundsHandler
from nlpsolve_jax.context import OptContext
from nlpsolve_jax.line_search import AbstractStepSizeControl, ArmijoGoldsteinRule
from nlpsolve_jax.logging import get_logger
from nlpsolve_jax.nlp import NLP, check_nlp
from nlpsolve_jax.optimizers import BFGS, AbstractOptimizer, BFGSState
from nlpsolve_jax.options import Options
from nlpsolve_jax.output import AbstractSolverLogger, StdoutLogger
from nlpsolve_jax.types import Jacobian, ObjectiveFn, Scalar, Vector
from nlpsolve_jax.utils import norm2_sqr

logger = get_logger(__name__)


class SolverState(eqx.Module):
    """State of the solver.

    This is a JAX PyTree (via eqx.Module) that holds all mutable state
    needed across iterations.

    Attributes:
        context: Context after the most recent iteration.
        optimizer_state: State of the direction strategy.
        bounds_handler: Barrier handler with the current barrier parameter.
        constraints_handler: Augmented Lagrangian handler with the current
            multipliers.
        flat_direction: Whether the last direction was too small to follow.
    """

    context: OptContext
    optimizer_state: Any
    bounds_handler: BarrierBoundsHandler
    constraints_handler: AugmentedLagrangianConstraintHandler
    flat_direction: Bool[Array, ""]


class Residuals(eqx.Module):
    """Constraint values and Jacobians at one point."""

    g: Float[Array, " m_ineq"]
    grad_g: Jacobian
    h: Float[Array, " m_eq"]
    grad_h: Jacobian


class Solution(eqx.Module):
    """Outcome of a solve.

    Attributes:
        best_objective_value: Adapted objective value of the last iteration,
            in the caller's objective sense.
        best_solution: The final point.
        num_iterations: Number of iterations performed.
        result: Termination status.
        stats: Solver statistics, see :meth:`Solver.postprocess`.
    """

    best_objective_value: float
    best_solution: Vector
    num_iterations: int
    result: optx.RESULTS
    stats: dict[str, Any]

    @property
    def success(self) -> bool:
        return bool(self.result == optx.RESULTS.successful)

    def __str__(self) -> str:
        solution = np.asarray(self.best_solution).tolist()
        return (
            f"best objective value: {self.best_objective_value}\n"
            f"best solution: {solution}\n"
            f"in {self.num_iterations} iterations"
        )


def _dispatch_log(
    loggers: Sequence[AbstractSolverLogger],
    context: OptContext,
    enabled: np.ndarray,
    *,
    force: bool,
) -> None:
    if not bool(enabled):
        return
    for solver_logger in loggers:
        solver_logger.log(context, ignore_frequency=force)


class Solver(optx.AbstractMinimiser):
    """Interior-point / augmented Lagrangian solver for an :class:`NLP`.

    Variable bounds are handled by a log-barrier whose weight is halved (by
    default) after every iteration, general constraints by an augmented
    Lagrangian with a fixed penalty and first-order multiplier updates.

    Attributes:
        nlp: The problem to solve.
        optimizer: Direction strategy (default :class:`BFGS`).
        step_size_control: Line search (default :class:`ArmijoGoldsteinRule`
            built from ``options.step_size_control``).
        options: Solver settings.
        loggers: Progress loggers, called after every iteration.
        rtol: Unused; required by the optimistix interface.
        atol: Squared direction norm below which the direction counts as flat.
        norm: Norm reported to optimistix.

    Example:
        >>> from nlpsolve_jax import Solver, SteepestDescent
        >>>
        >>> solution = Solver(MinXSquared(), optimizer=SteepestDescent()).solve()
        >>> print(solution)
    """

    nlp: NLP
    optimizer: AbstractOptimizer
    step_size_control: AbstractStepSizeControl
    options: Options = eqx.field(static=True)
    loggers: tuple[AbstractSolverLogger, ...] = eqx.field(static=True)

    rtol: float
    atol: float
    norm: Callable = eqx.field(static=True)

    def __init__(
        self,
        nlp: NLP,
        optimizer: Optional[AbstractOptimizer] = None,
        step_size_control: Optional[AbstractStepSizeControl] = None,
        options: Optional[Options] = None,
        loggers: Optional[Sequence[AbstractSolverLogger]] = None,
        atol: float = 1e-10,
    ):
        check_nlp(nlp)
        options = options if options is not None else Options()
        if step_size_control is None:
            ls = options.step_size_control
            step_size_control = ArmijoGoldsteinRule(ls.alpha_0, ls.tau, ls.c)
        if loggers is None:
            loggers = (StdoutLogger(options.logger.frequency),)

        self.nlp = nlp
        self.optimizer = optimizer if optimizer is not None else BFGS()
        self.step_size_control = step_size_control
        self.options = options
        self.loggers = tuple(loggers)
        self.rtol = 0.0
        self.atol = atol
        self.norm = optx.two_norm

    @property
    def sign(self) -> float:
        return self.nlp.info().sense.sign

    def _objective(self, x: Vector) -> Scalar:
        return jnp.asarray(self.nlp.objective(x), dtype=jnp.result_type(x))

    def _residuals(self, x: Vector) -> Residuals:
        return Residuals(
            g=jnp.asarray(self.nlp.inequality_constraints(x)),
            grad_g=jnp.asarray(self.nlp.grad_inequality_constraints(x)),
            h=jnp.asarray(self.nlp.equality_constraints(x)),
            grad_h=jnp.asarray(self.nlp.grad_equality_constraints(x)),
        )

    def _adapted_gradient(
        self,
        x: Vector,
        residuals: Residuals,
        bounds_handler: BarrierBoundsHandler,
        constraints_handler: AugmentedLagrangianConstraintHandler,
    ) -> Vector:
        grad = self.sign * jnp.asarray(self.nlp.grad_objective(x))
        grad = bounds_handler.adapted_objective_gradient(x, grad)
        return constraints_handler.adapted_objective_grad(
            grad, residuals.g, residuals.grad_g, residuals.h, residuals.grad_h
        )

    def _adapted_objective(
        self,
        bounds_handler: BarrierBoundsHandler,
        constraints_handler: AugmentedLagrangianConstraintHandler,
    ) -> ObjectiveFn:
        def adapted(x: Vector) -> Scalar:
            value = bounds_handler.adapted_objective_value(
                x, self.sign * self._objective(x)
            )
            g = jnp.asarray(self.nlp.inequality_constraints(x))
            h = jnp.asarray(self.nlp.equality_constraints(x))
            return constraints_handler.adapted_objective_value(value, g, h)

        return adapted

    def _emit(
        self, context: OptContext, enabled: Bool[Array, ""], force: bool
    ) -> None:
        """Hand the context, in the caller's sense, to the loggers."""
        if not self.loggers:
            return
        reported = eqx.tree_at(
            lambda c: (c.objective_current, c.objective_previous),
            context,
            (
                self.sign * context.objective_current,
                self.sign * context.objective_previous,
            ),
        )
        jax.debug.callback(
            functools.partial(_dispatch_log, self.loggers, force=force),
            reported,
            enabled,
            ordered=True,
        )

    def problem_fn(self, y: Vector, args: Any) -> tuple[Scalar, None]:
        """Objective of ``nlp`` in the ``fn(y, args)`` form optimistix expects."""
        return self._objective(y), None

    def init(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        args: Any,
        options: dict[str, Any],
        f_struct: Any,
        aux_struct: Any,
        tags: frozenset[object],
    ) -> SolverState:
        """Initialize the solver state.

        Builds the barrier and augmented Lagrangian handlers from the
        settings, computes the adapted gradient at the starting point and
        lets the optimizer precompute its first direction.

        Args:
            fn: Objective function with signature fn(y, args) -> (f_val, aux).
                Only used for the auxiliary output; the solver evaluates the
                problem through ``self.nlp``.
            y: Initial point.
            args: Additional arguments passed to fn.
            options: Runtime options dictionary.
            f_struct: Structure of function output.
            aux_struct: Structure of auxiliary output.
            tags: Lineax tags for the problem.

        Returns:
            Initial SolverState with a context seeded so that the first
            iteration always proceeds.
        """
        info = self.nlp.info()
        barrier_options = self.options.bounds_handler
        bounds_handler = BarrierBoundsHandler(
            self.nlp.bounds(),
            barrier_parameter=barrier_options.barrier_parameter,
            barrier_decrease_factor=barrier_options.barrier_decrease_factor,
        )
        constraints_handler = AugmentedLagrangianConstraintHandler.initial(
            info.num_inequality_constraints,
            info.num_equality_constraints,
            c=self.options.constraints_handler.c,
            dtype=y.dtype,
        )

        residuals = self._residuals(y)
        grad = self._adapted_gradient(
            y, residuals, bounds_handler, constraints_handler
        )
        optimizer_state = self.optimizer.init(y, grad)

        unset = jnp.full((), jnp.inf, dtype=y.dtype)
        context = OptContext(
            iteration=jnp.array(0),
            x_current=y,
            x_previous=y,
            objective_current=unset,
            objective_previous=unset,
            objective_grad=grad,
            direction_scale_factor=jnp.zeros((), dtype=y.dtype),
            pure_objective=self._objective(y),
        )

        return SolverState(
            context=context,
            optimizer_state=optimizer_state,
            bounds_handler=bounds_handler,
            constraints_handler=constraints_handler,
            flat_direction=jnp.array(False),
        )

    def step(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        args: Any,
        options: dict[str, Any],
        state: SolverState,
        tags: frozenset[object],
    ) -> tuple[Float[Array, " n"], SolverState, Any]:
        """Perform one iteration.

        If the squared norm of the direction is below ``atol`` the point is
        left unchanged and the state is marked flat, which terminates the
        solve.

        Args:
            fn: Objective function.
            y: Current point.
            args: Additional arguments.
            options: Runtime options.
            state: Current solver state.
            tags: Lineax tags.

        Returns:
            Tuple of (new_y, new_state, aux).
        """
        previous = state.context
        iteration = previous.iteration + 1

        residuals = self._residuals(y)
        grad = self._adapted_gradient(
            y, residuals, state.bounds_handler, state.constraints_handler
        )
        context = OptContext(
            iteration=iteration,
            x_current=y,
            x_previous=previous.x_current,
            objective_current=previous.objective_current,
            objective_previous=previous.objective_current,
            objective_grad=grad,
            direction_scale_factor=previous.direction_scale_factor,
            pure_objective=previous.pure_objective,
        )
        direction, optimizer_state = self.optimizer.iterate(
            state.optimizer_state, context
        )
        flat = norm2_sqr(direction) < self.atol
        adapted = self._adapted_objective(
            state.bounds_handler, state.constraints_handler
        )

        def stay():
            return (
                y,
                adapted(y),
                previous.direction_scale_factor,
                previous.pure_objective,
                state.bounds_handler,
                state.constraints_handler,
            )

        def advance():
            result = self.step_size_control.do_step(adapted, y, grad, direction)
            bounds_handler = state.bounds_handler.update_barrier_parameter()
            new_residuals = self._residuals(result.x)
            constraints_handler = state.constraints_handler.update_multipliers(
                new_residuals.g, new_residuals.h
            )
            return (
                result.x,
                result.obj_value,
                result.direction_scale_factor,
                self._objective(result.x),
                bounds_handler,
                constraints_handler,
            )

        (
            y_new,
            objective,
            scale_factor,
            pure_objective,
            bounds_handler,
            constraints_handler,
        ) = jax.lax.cond(flat, stay, advance)

        new_context = OptContext(
            iteration=iteration,
            x_current=y_new,
            x_previous=previous.x_current,
            objective_current=objective,
            objective_previous=previous.objective_current,
            objective_grad=grad,
            direction_scale_factor=scale_factor,
            pure_objective=pure_objective,
        )
        self._emit(new_context, ~flat, force=False)

        _, aux = fn(y_new, args)

        new_state = SolverState(
            context=new_context,
            optimizer_state=optimizer_state,
            bounds_handler=bounds_handler,
            constraints_handler=constraints_handler,
            flat_direction=flat,
        )
        return y_new, new_state, aux

    def terminate(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        args: Any,
        options: dict[str, Any],
        state: SolverState,
        tags: frozenset[object],
    ) -> tuple[Bool[Array, ""], Any]:
        """Check if the solver should terminate.

        The solve converges when the optimizer reports that the adapted
        objective has settled or when the last direction was flat. A
        non-finite adapted objective, typically caused by a starting point
        outside the bounds, ends the solve as diverged.

        Returns:
            Tuple of (done, result).
        """
        context = state.context
        converged = self.optimizer.done(context) | state.flat_direction
        diverged = (context.iteration > 0) & ~jnp.isfinite(context.objective_current)
        done = converged | diverged
        result = jax.lax.cond(
            diverged & ~state.flat_direction,
            lambda: optx.RESULTS.nonlinear_divergence,
            lambda: optx.RESULTS.successful,
        )
        return done, result

    def postprocess(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        aux: Any,
        args: Any,
        options: dict[str, Any],
        state: SolverState,
        tags: frozenset[object],
        result: Any,
    ) -> tuple[Float[Array, " n"], Any, dict[str, Any]]:
        """Write the final log line and collect statistics.

        Returns:
            Tuple of (y, aux, stats). ``stats`` holds ``num_steps``,
            ``best_objective_value`` (adapted, caller's sense),
            ``pure_objective``, ``max_violation``, ``barrier_parameter`` and,
            for BFGS, ``num_skipped_updates`` and ``num_resets``.
        """
        context = state.context
        self._emit(context, jnp.array(True), force=True)

        residuals = self._residuals(y)
        stats = {
            "num_steps": context.iteration,
            "best_objective_value": self.sign * context.objective_current,
            "pure_objective": context.pure_objective,
            "max_violation": state.constraints_handler.max_violation(
                residuals.g, residuals.h
            ),
            "barrier_parameter": state.bounds_handler.barrier_parameter,
        }
        if isinstance(state.optimizer_state, BFGSState):
            approx = state.optimizer_state.inverse_hessian
            stats["num_skipped_updates"] = approx.num_skipped
            stats["num_resets"] = approx.num_resets
        return y, aux, stats

    def solve(self) -> Solution:
        """Run the solve from ``nlp.initial_guess()`` until it terminates.

        Iterations are compiled once with ``eqx.filter_jit`` and driven from
        Python, which stops after ``options.max_steps`` iterations when set.

        Returns:
            The Solution. ``result`` is ``RESULTS.successful`` on
            convergence, ``RESULTS.nonlinear_max_steps_reached`` when the
            iteration cap was hit and ``RESULTS.nonlinear_divergence`` when
            the objective became non-finite.
        """
        y = jnp.asarray(self.nlp.initial_guess(), dtype=jnp.result_type(float))
        fn = self.problem_fn
        args = None
        tags = frozenset()

        init = eqx.filter_jit(self.init)
        step = eqx.filter_jit(self.step)
        terminate = eqx.filter_jit(self.terminate)

        state = init(fn, y, args, {}, None, None, tags)
        aux = None
        max_steps = self.options.max_steps
        num_steps = 0
        while True:
            done, result = terminate(fn, y, args, {}, state, tags)
            if done:
                break
            if max_steps is not None and num_steps >= max_steps:
                result = optx.RESULTS.nonlinear_max_steps_reached
                break
            y, state, aux = step(fn, y, args, {}, state, tags)
            num_steps += 1

        y, aux, stats = self.postprocess(fn, y, aux, args, {}, state, tags, result)

        if not bool(jnp.isfinite(state.context.objective_current)):
            logger.warning(
                "Adapted objective is not finite after %d iterations; "
                "is the initial guess inside the bounds?",
                num_steps,
            )
        if isinstance(state.optimizer_state, BFGSState):
            logger.debug(
                "BFGS skipped %d updates and reset %d times",
                int(stats["num_skipped_updates"]),
                int(stats["num_resets"]),
            )
        logger.info("Solve finished after %d iterations", num_steps)

        return Solution(
            best_objective_value=float(stats["best_objective_value"]),
            best_solution=y,
            num_iterations=int(stats["num_steps"]),
            result=result,
            stats=stats,
        )


def solve(
    nlp: NLP,
    optimizer: Optional[AbstractOptimizer] = None,
    step_size_control: Optional[AbstractStepSizeControl] = None,
    options: Optional[Options] = None,
    loggers: Optional[Sequence[AbstractSolverLogger]] = None,
) -> Solution:
    """Solve ``nlp`` with a freshly built :class:`Solver`.

    Args:
        nlp: The problem.
        optimizer: Direction strategy (default BFGS).
        step_size_control: Line search (default from ``options``).
        options: Solver settings (default ``Options()``).
        loggers: Progress loggers (default one StdoutLogger).

    Returns:
        The Solution of the solve.
    """
    return Solver(
        nlp,
        optimizer=optimizer,
        step_size_control=step_size_control,
        options=options,
        loggers=loggers,
    ).solve()
