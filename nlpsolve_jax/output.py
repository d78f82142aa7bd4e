"""Progress output of a running solve.

Solver loggers receive the :class:`OptContext` of every iteration, with
arrays already transferred to the host, and decide themselves whether to
write anything. They are called from inside compiled code through
``jax.debug.callback`` and must therefore not raise.
"""

import abc
import sys
from typing import Optional, TextIO

from nlpsolve_jax.context import OptContext


class AbstractSolverLogger(abc.ABC):
    """Receives the context of every iteration of a solve."""

    @abc.abstractmethod
    def log(self, context: OptContext, ignore_frequency: bool = False) -> None:
        """Record the iteration described by ``context``.

        Args:
            context: Context after the iteration, in the caller's objective
                sense.
            ignore_frequency: Log even if the iteration is not a multiple of
                the configured frequency.
        """


class StdoutLogger(AbstractSolverLogger):
    """Writes one line per logged iteration.

    A line looks like::

        iteration     3 | objective           1.21000012 (actual:     1.21000000) | change:     0.00000412

    Iterations that are a multiple of ``frequency`` are logged. A forced call
    (``ignore_frequency=True``) is logged unless the same iteration has just
    been written, so the final line of a solve is never duplicated.

    Args:
        frequency: Log every ``frequency``-th iteration (at least 1).
        stream: Where to write. Defaults to ``sys.stdout`` at the time of
            each write.
    """

    def __init__(self, frequency: int = 1, stream: Optional[TextIO] = None):
        self.frequency = max(int(frequency), 1)
        self.stream = stream
        self.last_output_iteration: Optional[int] = None

    def log(self, context: OptContext, ignore_frequency: bool = False) -> None:
        iteration = int(context.iteration)
        if ignore_frequency:
            if self.last_output_iteration == iteration:
                return
        elif iteration % self.frequency != 0:
            return

        objective = float(context.objective_current)
        change = abs(objective - float(context.objective_previous))
        line = (
            f"iteration {iteration:5d} | objective {objective:20.8f} "
            f"(actual: {float(context.pure_objective):14.8f}) | "
            f"change: {change:14.8f}"
        )
        print(line, file=self.stream if self.stream is not None else sys.stdout)
        self.last_output_iteration = iteration
