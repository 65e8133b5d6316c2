import math
import numbers
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

import torch

from dectlib.errors import ConfigurationError, NumericalBreakdown
from dectlib.monitors import CGTraceEntry, ConvergenceMonitor, ResidualMonitor
from dectlib.operators import Operator


class CGStatus(Enum):
    CONVERGED = 'converged'
    EXHAUSTED = 'exhausted'
    CANCELLED = 'cancelled'
    BREAKDOWN = 'breakdown'


class CGState:
    """
    Complete state of a CG run: iterate x, residual r, search direction p and the
    history of squared residual norms rho_0, rho_1, ...

    A run can be paused after any iteration and resumed from this object alone.
    """
    def __init__(self, x: torch.Tensor, r: torch.Tensor, p: torch.Tensor, rho_history: List[float], iteration: int = 0):
        self.x = x
        self.r = r
        self.p = p
        self.rho_history = rho_history
        self.iteration = iteration

    @property
    def rho(self) -> float:
        return self.rho_history[-1]

    def copy(self) -> 'CGState':
        return CGState(self.x.clone(), self.r.clone(), self.p.clone(), list(self.rho_history), self.iteration)


@dataclass
class CGResult:
    solution: torch.Tensor
    status: CGStatus
    iterations: int
    trace: List[CGTraceEntry] = field(default_factory=list)
    final_error: Optional[float] = None
    state: Optional[CGState] = None


class ConjugateGradientSolver:
    """
    Matrix-free conjugate gradient for H g = b with a symmetric positive definite H.

    Follows Kelley, "Iterative Methods for Optimization" (SIAM 1999), p. 7, with the
    Fletcher-Reeves direction update. The right-hand side is fixed at construction,
    so `solve` can be called repeatedly with other budgets, thresholds or a paused
    state without recomputing b.
    """
    def __init__(self,
                 normal_operator: Operator,
                 rhs: torch.Tensor,
                 verbose: bool = False,
                 log_fn: Optional[Callable[..., None]] = None):
        """
        Args:
            normal_operator (Operator): The operator H. Only `op` is used.
            rhs (torch.Tensor): Right-hand side b, a 1D floating point tensor.
            verbose (bool): If True, print iteration progress.
            log_fn: Optional callback, called as
                `fn(iteration=k, rho=rho_k, mean_error=err_k)` after every iteration.
        """
        if rhs.ndim != 1:
            raise ConfigurationError(f"Right-hand side must be a 1D vector, got shape {tuple(rhs.shape)}.")
        if not rhs.is_floating_point():
            raise ConfigurationError(f"Right-hand side must be a real floating point tensor, got {rhs.dtype}.")
        self.normal_operator = normal_operator
        self.rhs = rhs
        self.verbose = verbose
        self.log_fn = log_fn

    def _apply(self, x: torch.Tensor) -> torch.Tensor:
        out = self.normal_operator.op(x)
        if out.shape != x.shape:
            raise ConfigurationError(f"Normal operator maps shape {tuple(x.shape)} to {tuple(out.shape)}; it must preserve the shape.")
        return out

    def initial_state(self, x0: Optional[torch.Tensor] = None) -> CGState:
        """INIT: r0 = b - H x0, rho_0 = <r0, r0>, p0 = r0. x0 defaults to zeros."""
        if x0 is None:
            x = torch.zeros_like(self.rhs)
        else:
            if x0.shape != self.rhs.shape:
                raise ConfigurationError(f"Initial iterate shape {tuple(x0.shape)} does not match right-hand side shape {tuple(self.rhs.shape)}.")
            x = x0.detach().clone().to(device=self.rhs.device, dtype=self.rhs.dtype)
        r = self.rhs - self._apply(x)
        rho = torch.dot(r, r).item()
        return CGState(x=x, r=r, p=r.clone(), rho_history=[rho], iteration=0)

    def step(self, state: CGState, trace: Optional[List[CGTraceEntry]] = None) -> CGState:
        """
        Performs one CG iteration in place on `state`.

        Raises:
            NumericalBreakdown: If <p, Hp> is zero or not finite, or the update
                produces a non-finite residual. `state` is left untouched.
        """
        k = state.iteration + 1
        rho_prev = state.rho_history[-1]
        if k > 1:
            rho_prev_prev = state.rho_history[-2]
            if rho_prev_prev == 0:
                raise NumericalBreakdown(f"CG cannot continue past an exact solution (iteration {k}).",
                                         iteration=k, last_iterate=state.x.clone(), trace=list(trace or []))
            p = torch.add(state.r, state.p, alpha=rho_prev / rho_prev_prev)
        else:
            p = state.p

        w = self._apply(p)
        curvature = torch.dot(p, w).item()
        if curvature == 0 or not math.isfinite(curvature):
            raise NumericalBreakdown(f"CG breakdown at iteration {k}: <p, Hp> = {curvature}.",
                                     iteration=k, last_iterate=state.x.clone(), trace=list(trace or []))
        step_length = rho_prev / curvature
        r_new = torch.add(state.r, w, alpha=-step_length)
        rho = torch.dot(r_new, r_new).item()
        if not math.isfinite(rho):
            raise NumericalBreakdown(f"CG breakdown at iteration {k}: residual norm is not finite.",
                                     iteration=k, last_iterate=state.x.clone(), trace=list(trace or []))

        state.x = torch.add(state.x, p, alpha=step_length)
        state.r = r_new
        state.p = p
        state.rho_history.append(rho)
        state.iteration = k
        return state

    def _report(self, entry: CGTraceEntry):
        if self.verbose:
            if entry.mean_error is not None:
                print(f"Iteration {entry.iteration:4d}, total error value {entry.mean_error:.4e}")
            else:
                print(f"Iteration {entry.iteration:4d}, rho {entry.rho:.4e}")
        if self.log_fn:
            self.log_fn(iteration=entry.iteration, rho=entry.rho, mean_error=entry.mean_error)

    def solve(self,
              max_iters: int,
              monitor: Optional[ConvergenceMonitor] = None,
              x0: Optional[torch.Tensor] = None,
              state: Optional[CGState] = None,
              should_stop: Optional[Callable[[], bool]] = None) -> CGResult:
        """
        Runs CG until the monitor reports convergence or `max_iters` iterations have
        been performed in this call.

        Args:
            max_iters (int): Iteration budget for this call.
            monitor (Optional[ConvergenceMonitor]): Stopping rule and diagnostics.
                Defaults to a `ResidualMonitor` without threshold (budget only).
            x0 (Optional[torch.Tensor]): Initial iterate for a fresh run.
            state (Optional[CGState]): A state returned by an earlier call, to resume.
            should_stop (Optional[Callable[[], bool]]): Polled before every iteration;
                returning True cancels the run with the current iterate.

        Returns:
            CGResult: EXHAUSTED when the budget ran out; that is a normal outcome.

        Raises:
            ConfigurationError: On an invalid budget or mismatched shapes.
            NumericalBreakdown: See `step`.
        """
        if isinstance(max_iters, bool) or not isinstance(max_iters, numbers.Integral) or max_iters < 1:
            raise ConfigurationError(f"max_iters must be a positive integer, got {max_iters!r}.")
        if state is not None and x0 is not None:
            raise ConfigurationError("Pass either x0 for a fresh run or state to resume, not both.")
        if monitor is None:
            monitor = ResidualMonitor()
        if state is None:
            state = self.initial_state(x0)
        elif state.x.shape != self.rhs.shape:
            raise ConfigurationError(f"Resumed state shape {tuple(state.x.shape)} does not match right-hand side shape {tuple(self.rhs.shape)}.")

        trace: List[CGTraceEntry] = []
        if state.rho == 0:
            entry, _ = monitor.check(state.x, state.rho, state.iteration)
            trace.append(entry)
            if self.verbose:
                print("Initial residual is zero, nothing to iterate.")
            return CGResult(solution=state.x, status=CGStatus.CONVERGED, iterations=0, trace=trace,
                            final_error=entry.mean_error, state=state)

        status = CGStatus.EXHAUSTED
        iterations = 0
        final_error = None
        while iterations < max_iters:
            if should_stop is not None and should_stop():
                status = CGStatus.CANCELLED
                if self.verbose:
                    print(f"CG cancelled after {iterations} iterations.")
                break
            self.step(state, trace)
            iterations += 1
            entry, converged = monitor.check(state.x, state.rho, state.iteration)
            trace.append(entry)
            final_error = entry.mean_error
            self._report(entry)
            if converged or state.rho == 0:
                status = CGStatus.CONVERGED
                if self.verbose:
                    print("Error below noise!" if entry.mean_error is not None else f"Converged at iteration {state.iteration}.")
                break
        else:
            if self.verbose:
                last = f"{final_error:.4e}" if final_error is not None else "n/a"
                print(f"Reached max_iters ({max_iters}) without converging. Last total error value: {last}, rho: {state.rho:.4e}.")

        return CGResult(solution=state.x, status=status, iterations=iterations, trace=trace,
                        final_error=final_error, state=state)


def conjugate_gradient(normal_operator: Operator,
                       rhs: torch.Tensor,
                       max_iters: int,
                       monitor: Optional[ConvergenceMonitor] = None,
                       x0: Optional[torch.Tensor] = None,
                       should_stop: Optional[Callable[[], bool]] = None,
                       verbose: bool = False,
                       log_fn: Optional[Callable[..., None]] = None) -> CGResult:
    """Solves H g = b with plain CG. See `ConjugateGradientSolver.solve`."""
    solver = ConjugateGradientSolver(normal_operator, rhs, verbose=verbose, log_fn=log_fn)
    return solver.solve(max_iters, monitor=monitor, x0=x0, should_stop=should_stop)


__all__ = ['CGStatus', 'CGState', 'CGResult', 'ConjugateGradientSolver', 'conjugate_gradient']
