"""Errors raised by the xalheart solvers."""

__all__ = [
    "XalheartError",
    "ConfigurationError",
    "DivergenceError",
    "AssemblyError",
    "SolverError",
    "CheckpointError",
]


class XalheartError(Exception):
    """Base class for all errors raised by xalheart."""


class ConfigurationError(XalheartError, ValueError):
    """Malformed input detected during setup, before any computation."""


class DivergenceError(XalheartError):
    """Non-finite values in the ionic state or in a solved field."""

    def __init__(self, what: str, time: float, count: int) -> None:
        self.what = what
        self.time = time
        self.count = count
        msg = "Numerical divergence in {} at t = {}: {} non-finite value(s)"
        super().__init__(msg.format(what, time, count))


class AssemblyError(XalheartError):
    """The tissue operator could not be assembled or factorised."""


class SolverError(XalheartError):
    """The linear solve failed after a successful assembly."""

    def __init__(
        self,
        time: float,
        iterations: int = None,
        residual: float = None,
        reason: str = None
    ) -> None:
        self.time = time
        self.iterations = iterations
        self.residual = residual
        msg = "Linear solve failed at t = {}".format(time)
        if iterations is not None:
            msg += " after {} iterations".format(iterations)
        if residual is not None:
            msg += " (residual {:.3e})".format(residual)
        if reason is not None:
            msg += ": {}".format(reason)
        super().__init__(msg)


class CheckpointError(XalheartError):
    """A checkpoint could not be read or written."""
