"""Per-iteration error monitoring and stopping rules for the CG solver."""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import torch

from dectlib.errors import ConfigurationError
from dectlib.operators import split_stacked


@dataclass
class CGTraceEntry:
    """One row of the convergence trace. Error fields stay None without ground truth."""
    iteration: int
    rho: float
    material_errors: Optional[Tuple[float, float]] = None
    mean_error: Optional[float] = None


def relative_error(reference: torch.Tensor, reconstruction: torch.Tensor) -> float:
    """Relative L2 error ||reference - reconstruction|| / ||reference||."""
    if reference.shape != reconstruction.shape:
        raise ConfigurationError(f"Reference and reconstruction must have the same shape, got {tuple(reference.shape)} and {tuple(reconstruction.shape)}.")
    reference = reference.to(device=reconstruction.device, dtype=reconstruction.dtype)
    ref_norm = torch.linalg.norm(reference.reshape(-1))
    if ref_norm.item() == 0:
        raise ConfigurationError("Relative error is undefined for an all-zero reference image.")
    return (torch.linalg.norm((reference - reconstruction).reshape(-1)) / ref_norm).item()


class ConvergenceMonitor(ABC):
    """Decides after every CG step whether the iteration has converged."""
    @abstractmethod
    def check(self, x: torch.Tensor, rho: float, iteration: int) -> Tuple[CGTraceEntry, bool]:
        pass


def check_reference_images(reference_images: Sequence[torch.Tensor]) -> Tuple[torch.Tensor, torch.Tensor]:
    """Checks that there are two square, equally shaped, non-zero reference images and returns them."""
    if len(reference_images) != 2:
        raise ConfigurationError(f"Expected two reference images, got {len(reference_images)}.")
    ref1, ref2 = reference_images
    if ref1.shape != ref2.shape or ref1.ndim != 2 or ref1.shape[0] != ref1.shape[1]:
        raise ConfigurationError(f"Reference images must be square and of equal shape, got {tuple(ref1.shape)} and {tuple(ref2.shape)}.")
    for i, ref in enumerate((ref1, ref2), start=1):
        if torch.linalg.norm(ref.reshape(-1)).item() == 0:
            raise ConfigurationError(f"Reference image {i} is all zeros; its relative error is undefined.")
    return ref1, ref2


class ReconstructionErrorMonitor(ConvergenceMonitor):
    """
    Benchmark monitor: compares the current iterate with known material images.

    The stacked iterate is split into its two material blocks, each block's relative
    L2 error against its reference is computed, and the two are averaged. The run is
    considered converged once the mean error drops below `tol`.
    """
    def __init__(self, reference_images: Sequence[torch.Tensor], tol: float = 1e-6):
        ref1, ref2 = check_reference_images(reference_images)
        if not tol >= 0:
            raise ConfigurationError(f"tol must be non-negative, got {tol}.")
        self.reference_images = (ref1, ref2)
        self.image_size = ref1.shape[0]
        self.tol = tol

    def evaluate(self, x: torch.Tensor) -> Tuple[Tuple[float, float], float]:
        """
        Args:
            x (torch.Tensor): Stacked iterate of length 2*N^2.

        Returns:
            ((err1, err2), mean_error)
        """
        recon1, recon2 = split_stacked(x, self.image_size)
        err1 = relative_error(self.reference_images[0], recon1)
        err2 = relative_error(self.reference_images[1], recon2)
        return (err1, err2), (err1 + err2) / 2

    def check(self, x, rho, iteration):
        errors, mean_error = self.evaluate(x)
        entry = CGTraceEntry(iteration=iteration, rho=rho, material_errors=errors, mean_error=mean_error)
        return entry, mean_error < self.tol


class ResidualMonitor(ConvergenceMonitor):
    """
    Ground-truth-free monitor. Reports rho only.

    With `tol` set, the run converges when sqrt(rho) < tol * rhs_norm (or < tol if
    no `rhs_norm` is given). With `tol=None` only the iteration budget ends the run.
    """
    def __init__(self, tol: Optional[float] = None, rhs_norm: Optional[float] = None):
        if tol is not None and not tol >= 0:
            raise ConfigurationError(f"tol must be non-negative, got {tol}.")
        self.tol = tol
        self.rhs_norm = rhs_norm

    def check(self, x, rho, iteration):
        entry = CGTraceEntry(iteration=iteration, rho=rho)
        if self.tol is None:
            return entry, False
        scale = self.rhs_norm if self.rhs_norm else 1.0
        return entry, math.sqrt(rho) < self.tol * scale


__all__ = ['CGTraceEntry', 'ConvergenceMonitor', 'check_reference_images', 'ReconstructionErrorMonitor', 'ResidualMonitor', 'relative_error']
