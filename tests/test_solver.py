"""Integration tests for the solver.

These tests run complete solves on small problems with bounds, equality
and inequality constraints, with both optimizers, through Solver.solve and
through optimistix.minimise.
"""

import io

import equinox as eqx
import jax
import jax.numpy as jnp
import numpy as np
import optimistix as optx
import pytest
from scipy.optimize import minimize as scipy_minimize

from nlpsolve_jax import (
    BFGS,
    NLP,
    ArmijoGoldsteinRule,
    NLPInfo,
    ObjectiveSense,
    Options,
    Solver,
    SteepestDescent,
    StdoutLogger,
    VariableBounds,
    solve,
)

# Enable 64-bit precision for numerical accuracy
jax.config.update("jax_enable_x64", True)


class BoundedSquare(NLP):
    """min (or max) x^2 subject to 1.1 <= x <= 3.213."""

    sense: ObjectiveSense = ObjectiveSense.MIN
    start: float = 2.0

    def info(self):
        return NLPInfo(num_variables=1, sense=self.sense)

    def bounds(self):
        return [VariableBounds(lb=1.1, ub=3.213)]

    def objective(self, x):
        return x[0] ** 2

    def grad_objective(self, x):
        return 2.0 * x

    def initial_guess(self):
        return jnp.array([self.start])


class SumOfSquares(NLP):
    """min x0^2 + x1^2 subject to one linear constraint x0 + x1 = 0.5 or >= 0.5."""

    equality: bool = True

    def info(self):
        if self.equality:
            return NLPInfo(num_variables=2, num_equality_constraints=1)
        return NLPInfo(num_variables=2, num_inequality_constraints=1)

    def bounds(self):
        return [VariableBounds(), VariableBounds()]

    def objective(self, x):
        return jnp.sum(x**2)

    def grad_objective(self, x):
        return 2.0 * x

    def initial_guess(self):
        return jnp.array([1.0, 1.0])

    def equality_constraints(self, x):
        if self.equality:
            return jnp.array([x[0] + x[1] - 0.5])
        return super().equality_constraints(x)

    def grad_equality_constraints(self, x):
        if self.equality:
            return jnp.array([[1.0, 1.0]])
        return super().grad_equality_constraints(x)

    def inequality_constraints(self, x):
        if not self.equality:
            return jnp.array([-x[0] - x[1] + 0.5])
        return super().inequality_constraints(x)

    def grad_inequality_constraints(self, x):
        if not self.equality:
            return jnp.array([[-1.0, -1.0]])
        return super().grad_inequality_constraints(x)


class Quadratic(NLP):
    """min sum_i w_i (x_i - c_i)^2 without bounds."""

    weights: tuple[float, ...] = (1.0, 10.0)
    center: tuple[float, ...] = (0.0, 0.0)

    def info(self):
        return NLPInfo(num_variables=len(self.weights))

    def bounds(self):
        return [VariableBounds()] * len(self.weights)

    def objective(self, x):
        w = jnp.asarray(self.weights)
        return jnp.sum(w * (x - jnp.asarray(self.center)) ** 2)

    def grad_objective(self, x):
        w = jnp.asarray(self.weights)
        return 2.0 * w * (x - jnp.asarray(self.center))

    def initial_guess(self):
        return jnp.ones(len(self.weights))


class Rosenbrock(NLP):
    """The n-dimensional Rosenbrock function, minimum at (1, ..., 1)."""

    n: int = 2

    def info(self):
        return NLPInfo(num_variables=self.n)

    def bounds(self):
        return [VariableBounds()] * self.n

    def objective(self, x):
        return jnp.sum(100.0 * (x[1:] - x[:-1] ** 2) ** 2 + (1.0 - x[:-1]) ** 2)

    def grad_objective(self, x):
        return jax.grad(self.objective)(x)

    def initial_guess(self):
        return jnp.zeros(self.n)


def _options(max_steps=2000, **kwargs):
    return Options(max_steps=max_steps, **kwargs)


class TestBounds:
    """Bound-constrained problems."""

    @pytest.mark.parametrize("optimizer", [SteepestDescent(), BFGS()])
    def test_minimise_at_lower_bound(self, optimizer):
        solution = solve(
            BoundedSquare(),
            optimizer=optimizer,
            step_size_control=ArmijoGoldsteinRule(1.0, 0.95, 0.01),
            options=_options(),
            loggers=(),
        )

        assert solution.success
        np.testing.assert_allclose(solution.best_solution, [1.1], atol=1e-6)
        np.testing.assert_allclose(solution.stats["pure_objective"], 1.21, atol=1e-5)

    def test_default_settings(self):
        solution = Solver(BoundedSquare(), options=_options(), loggers=()).solve()

        assert solution.success
        np.testing.assert_allclose(solution.best_solution, [1.1], atol=1e-6)

    def test_iterates_stay_inside_bounds(self):
        solution = solve(
            BoundedSquare(),
            optimizer=SteepestDescent(),
            options=_options(),
            loggers=(),
        )
        x = float(solution.best_solution[0])
        assert 1.1 < x < 3.213

    @pytest.mark.parametrize("optimizer", [SteepestDescent(), BFGS()])
    def test_maximise_at_upper_bound(self, optimizer):
        solution = solve(
            BoundedSquare(sense=ObjectiveSense.MAX),
            optimizer=optimizer,
            options=_options(),
            loggers=(),
        )

        assert solution.success
        np.testing.assert_allclose(solution.best_solution, [3.213], atol=1e-6)
        # Reported values are in the caller's sense.
        assert solution.best_objective_value > 10.0
        np.testing.assert_allclose(
            solution.stats["pure_objective"], 3.213**2, atol=1e-4
        )

    def test_maximise_resets_bfgs_on_negative_curvature(self):
        solution = solve(
            BoundedSquare(sense=ObjectiveSense.MAX),
            options=_options(),
            loggers=(),
        )
        assert int(solution.stats["num_resets"]) >= 1

    def test_barrier_parameter_is_annealed(self):
        solution = solve(
            BoundedSquare(),
            optimizer=SteepestDescent(),
            options=_options(),
            loggers=(),
        )
        # Annealed once per iteration that moved; a final flat iteration does not.
        mu = float(solution.stats["barrier_parameter"])
        n = solution.num_iterations
        assert mu == pytest.approx(1e-6 * 0.5**n, rel=1e-12) or mu == pytest.approx(
            1e-6 * 0.5 ** (n - 1), rel=1e-12
        )
        assert n > 1

    def test_infeasible_start_diverges(self):
        solution = solve(
            BoundedSquare(start=0.5),
            optimizer=SteepestDescent(),
            options=_options(max_steps=10),
            loggers=(),
        )
        assert not solution.success
        assert bool(solution.result == optx.RESULTS.nonlinear_divergence)
        assert solution.num_iterations == 1


class TestConstraints:
    """Problems with general constraints, solved with the default penalty."""

    def _solve(self, nlp, optimizer=None):
        return solve(
            nlp,
            optimizer=optimizer if optimizer is not None else SteepestDescent(),
            options=_options(),
            loggers=(),
        )

    @pytest.mark.parametrize("optimizer", [SteepestDescent(), BFGS()])
    def test_equality(self, optimizer):
        nlp = SumOfSquares(equality=True)
        solution = self._solve(nlp, optimizer)

        assert solution.success
        residual = nlp.equality_constraints(solution.best_solution)
        assert float(jnp.abs(residual[0])) <= 1e-3
        np.testing.assert_allclose(solution.best_solution, [0.25, 0.25], atol=1e-2)
        assert float(solution.stats["max_violation"]) <= 1e-3

    @pytest.mark.parametrize("optimizer", [SteepestDescent(), BFGS()])
    def test_inequality(self, optimizer):
        nlp = SumOfSquares(equality=False)
        solution = self._solve(nlp, optimizer)

        assert solution.success
        residual = nlp.inequality_constraints(solution.best_solution)
        assert float(residual[0]) <= 1e-3
        np.testing.assert_allclose(solution.best_solution, [0.25, 0.25], atol=1e-2)

    def test_inactive_inequality(self):
        """A constraint that holds at the unconstrained minimum changes nothing."""

        class Shifted(SumOfSquares):
            def inequality_constraints(self, x):
                return jnp.array([x[0] + x[1] - 10.0])

            def grad_inequality_constraints(self, x):
                return jnp.array([[1.0, 1.0]])

        solution = self._solve(Shifted(equality=False))

        assert solution.success
        np.testing.assert_allclose(solution.best_solution, [0.0, 0.0], atol=1e-3)
        assert float(solution.stats["max_violation"]) == 0.0


class TestOptimizers:
    """Comparisons between the direction strategies."""

    def test_bfgs_needs_fewer_iterations(self):
        nlp = Quadratic()
        steepest = solve(nlp, optimizer=SteepestDescent(), options=_options(), loggers=())
        bfgs = solve(nlp, optimizer=BFGS(), options=_options(), loggers=())

        assert steepest.success
        assert bfgs.success
        np.testing.assert_allclose(steepest.best_solution, [0.0, 0.0], atol=1e-3)
        np.testing.assert_allclose(bfgs.best_solution, [0.0, 0.0], atol=1e-3)
        assert bfgs.num_iterations < steepest.num_iterations

    def test_vs_scipy(self):
        nlp = Quadratic(weights=(1.0, 10.0, 3.0), center=(1.0, -2.0, 0.5))
        solution = solve(nlp, options=_options(), loggers=())

        result_scipy = scipy_minimize(
            lambda x: np.sum(np.array(nlp.weights) * (x - np.array(nlp.center)) ** 2),
            np.ones(3),
            method="BFGS",
        )

        assert solution.success
        np.testing.assert_allclose(solution.best_solution, result_scipy.x, atol=1e-4)

    @pytest.mark.slow
    def test_rosenbrock(self):
        solution = solve(Rosenbrock(n=2), options=_options(max_steps=5000), loggers=())
        np.testing.assert_allclose(solution.best_solution, [1.0, 1.0], atol=1e-2)

    def test_flat_start_terminates_immediately(self):
        solution = solve(
            Quadratic(center=(1.0, 1.0)), options=_options(), loggers=()
        )
        assert solution.success
        assert solution.num_iterations == 1
        np.testing.assert_array_equal(solution.best_solution, [1.0, 1.0])


class TestSolverLoop:
    """Tests for iteration caps, logging and the optimistix interface."""

    def test_max_steps(self):
        solution = solve(
            Quadratic(),
            optimizer=SteepestDescent(),
            options=_options(max_steps=2),
            loggers=(),
        )
        assert solution.num_iterations == 2
        assert not solution.success
        assert bool(solution.result == optx.RESULTS.nonlinear_max_steps_reached)

    def test_progress_is_printed(self, capsys):
        solution = Solver(BoundedSquare(), options=_options()).solve()

        lines = capsys.readouterr().out.splitlines()
        assert len(lines) >= 1
        assert all(line.startswith("iteration ") for line in lines)
        assert lines[-1].startswith(f"iteration {solution.num_iterations:5d} |")

    def test_logging_frequency(self):
        stream = io.StringIO()
        solution = Solver(
            BoundedSquare(),
            optimizer=SteepestDescent(),
            options=_options(),
            loggers=(StdoutLogger(frequency=3, stream=stream),),
        ).solve()

        iterations = [
            int(line.split("|")[0].split()[1])
            for line in stream.getvalue().splitlines()
        ]
        assert iterations[-1] == solution.num_iterations
        assert all(it % 3 == 0 for it in iterations[:-1])
        assert len(iterations) == len(set(iterations))

    def test_solution_str(self):
        solution = solve(BoundedSquare(), options=_options(), loggers=())
        lines = str(solution).splitlines()
        assert lines[0].startswith("best objective value: ")
        assert lines[1].startswith("best solution: [")
        assert lines[2] == f"in {solution.num_iterations} iterations"

    def test_bounds_length_mismatch(self):
        class TooManyBounds(BoundedSquare):
            def bounds(self):
                return [VariableBounds(lb=1.1, ub=3.213)] * 2

        with pytest.raises(ValueError):
            Solver(TooManyBounds())

    def test_optimistix_minimise(self):
        solver = Solver(BoundedSquare(), optimizer=SteepestDescent(), loggers=())
        x0 = jnp.array([2.0])
        sol = optx.minimise(
            solver.problem_fn, solver, x0, has_aux=True, max_steps=2000, throw=False
        )

        assert bool(sol.result == optx.RESULTS.successful)
        np.testing.assert_allclose(sol.value, [1.1], atol=1e-6)
        assert int(sol.stats["num_steps"]) > 0

    def test_optimistix_minimise_returns_caller_aux(self):
        solver = Solver(BoundedSquare(), optimizer=SteepestDescent(), loggers=())

        def fn(y, args):
            return jnp.sum(y**2), 2.0 * y

        sol = optx.minimise(
            fn, solver, jnp.array([2.0]), has_aux=True, max_steps=2000, throw=False
        )

        assert bool(sol.result == optx.RESULTS.successful)
        np.testing.assert_allclose(sol.aux, 2.0 * sol.value)

    def test_step_is_jittable(self):
        solver = Solver(Quadratic(), optimizer=BFGS(), loggers=())
        fn = solver.problem_fn
        x0 = jnp.array([1.0, 1.0])
        state = solver.init(fn, x0, None, {}, None, None, frozenset())

        step = eqx.filter_jit(solver.step)
        y, state, _ = step(fn, x0, None, {}, state, frozenset())
        y, state, _ = step(fn, y, None, {}, state, frozenset())

        assert int(state.context.iteration) == 2
        assert float(solver.problem_fn(y, None)[0]) < float(solver.problem_fn(x0, None)[0])
