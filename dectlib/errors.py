"""Exception types raised by dectlib."""


class ConfigurationError(ValueError):
    """Invalid geometry, regularization or iteration settings, or mismatched vector sizes.

    Raised eagerly, before any CG iteration runs.
    """


class NumericalBreakdown(RuntimeError):
    """The CG curvature term <p, Hp> was zero or not finite.

    Attributes:
        iteration (int): 1-indexed iteration at which the breakdown happened.
        last_iterate (torch.Tensor): The last valid stacked iterate.
        trace (list): Convergence trace entries recorded before the breakdown.
    """
    def __init__(self, message: str, iteration: int, last_iterate=None, trace=None):
        super().__init__(message)
        self.iteration = iteration
        self.last_iterate = last_iterate
        self.trace = trace if trace is not None else []


__all__ = ['ConfigurationError', 'NumericalBreakdown']
