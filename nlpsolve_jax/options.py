"""Solver settings.

A tree of plain records holding the solver defaults. Values
outside their safe range are clamped rather than rejected.
"""

import dataclasses
from collections.abc import Mapping
from typing import Any, Optional

import equinox as eqx


def _clamp(value: float, lower: float, upper: float) -> float:
    return float(min(max(value, lower), upper))


class StepSizeControlOptions(eqx.Module):
    """Armijo-Goldstein backtracking settings.

    Attributes:
        alpha_0: Initial step length.
        tau: Backtracking factor in (0, 1).
        c: Sufficient-decrease constant in (0, 1).
    """

    alpha_0: float
    tau: float
    c: float

    def __init__(self, alpha_0: float = 1.0, tau: float = 0.5, c: float = 0.2):
        self.alpha_0 = float(max(alpha_0, 1e-4))
        self.tau = _clamp(tau, 1e-4, 1.0 - 1e-4)
        self.c = _clamp(c, 1e-4, 1.0 - 1e-4)


class BoundsHandlerOptions(eqx.Module):
    """Log-barrier settings.

    Attributes:
        barrier_parameter: Initial barrier weight.
        barrier_decrease_factor: Factor applied once per iteration, in (0, 1).
    """

    barrier_parameter: float
    barrier_decrease_factor: float

    def __init__(
        self, barrier_parameter: float = 1e-6, barrier_decrease_factor: float = 0.5
    ):
        self.barrier_parameter = float(max(barrier_parameter, 1e-300))
        self.barrier_decrease_factor = _clamp(
            barrier_decrease_factor, 1e-4, 1.0 - 1e-4
        )


class ConstraintsHandlerOptions(eqx.Module):
    """Augmented Lagrangian settings.

    Attributes:
        c: Penalty coefficient, fixed for the whole solve.
    """

    c: float

    def __init__(self, c: float = 1e9):
        self.c = float(max(c, 1e-12))


class LoggerOptions(eqx.Module):
    """Progress output settings.

    Attributes:
        frequency: Log every ``frequency``-th iteration.
    """

    frequency: int

    def __init__(self, frequency: int = 1):
        self.frequency = int(max(frequency, 1))


class Options(eqx.Module):
    """All solver settings.

    Attributes:
        step_size_control: Line-search settings.
        bounds_handler: Barrier settings.
        constraints_handler: Augmented Lagrangian settings.
        logger: Progress output settings.
        max_steps: Iteration cap. None runs until convergence.
    """

    step_size_control: StepSizeControlOptions
    bounds_handler: BoundsHandlerOptions
    constraints_handler: ConstraintsHandlerOptions
    logger: LoggerOptions
    max_steps: Optional[int]

    def __init__(
        self,
        step_size_control: Optional[StepSizeControlOptions] = None,
        bounds_handler: Optional[BoundsHandlerOptions] = None,
        constraints_handler: Optional[ConstraintsHandlerOptions] = None,
        logger: Optional[LoggerOptions] = None,
        max_steps: Optional[int] = None,
    ):
        self.step_size_control = step_size_control or StepSizeControlOptions()
        self.bounds_handler = bounds_handler or BoundsHandlerOptions()
        self.constraints_handler = constraints_handler or ConstraintsHandlerOptions()
        self.logger = logger or LoggerOptions()
        self.max_steps = None if max_steps is None else int(max(max_steps, 0))

    @classmethod
    def from_dict(cls, settings: Mapping[str, Any]) -> "Options":
        """Build options from a nested mapping.

        Example:
            >>> Options.from_dict({"constraints_handler": {"c": 10.0}})

        Raises:
            KeyError: If a section or field name is not recognised.
        """
        sections = {
            "step_size_control": StepSizeControlOptions,
            "bounds_handler": BoundsHandlerOptions,
            "constraints_handler": ConstraintsHandlerOptions,
            "logger": LoggerOptions,
        }
        kwargs: dict[str, Any] = {}
        for key, value in settings.items():
            if key == "max_steps":
                kwargs[key] = value
                continue
            if key not in sections:
                raise KeyError(f"Unknown options section: {key!r}")
            record = sections[key]
            unknown = set(value) - {f.name for f in dataclasses.fields(record)}
            if unknown:
                raise KeyError(f"Unknown {key} options: {sorted(unknown)}")
            kwargs[key] = record(**value)
        return cls(**kwargs)
