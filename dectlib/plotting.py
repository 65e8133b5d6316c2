"""Module for visualization of material decomposition results."""

import numpy as np
import matplotlib.pyplot as plt
import torch
from typing import List, Optional

from dectlib.monitors import CGTraceEntry


def _as_array(image) -> np.ndarray:
    if isinstance(image, torch.Tensor):
        return image.detach().cpu().numpy()
    return np.asarray(image)


def plot_material_decomposition(phantom1, recon1, phantom2, recon2,
                                err1: float, err2: float,
                                alpha: float, beta: float, max_iters: int,
                                filename: Optional[str] = None):
    """
    2x2 figure: phantoms on the left, reconstructions on the right.

    Args:
        phantom1, recon1, phantom2, recon2: 2D images (tensors or arrays).
        err1, err2 (float): Relative errors of the two reconstructions.
        alpha, beta (float): Regularization parameters, shown in the titles.
        max_iters (int): Iteration budget, shown in the titles.
        filename (str, optional): If provided, saves the figure instead of showing it.

    Returns:
        matplotlib.figure.Figure
    """
    fig, axes = plt.subplots(2, 2, figsize=(8, 8))
    panels = [
        (phantom1, 'Phantom1, matrixfree'),
        (recon1, f'Approximate error {round(err1 * 100, 1)}%, α={alpha:g}, β={beta:g}'),
        (phantom2, 'Phantom2, matrixfree'),
        (recon2, f'Approximate error {round(err2 * 100, 1)}%, iter={max_iters}'),
    ]
    for ax, (image, title) in zip(axes.flat, panels):
        ax.imshow(_as_array(image), cmap='gray')
        ax.set_title(title, fontsize=9)
        ax.set_aspect('equal')
        ax.axis('off')
    fig.tight_layout()
    if filename:
        fig.savefig(filename)
        plt.close(fig)
    return fig


def plot_convergence(trace: List[CGTraceEntry], filename: Optional[str] = None):
    """Plots rho and, when available, the mean relative error per iteration on log axes."""
    iterations = [e.iteration for e in trace]
    fig, ax = plt.subplots()
    ax.semilogy(iterations, [e.rho for e in trace], label='rho')
    errors = [e.mean_error for e in trace]
    if all(err is not None for err in errors) and errors:
        ax.semilogy(iterations, errors, label='mean relative error')
    ax.set_xlabel('Iteration')
    ax.legend()
    ax.grid(True)
    if filename:
        fig.savefig(filename)
        plt.close(fig)
    return fig


__all__ = ['plot_material_decomposition', 'plot_convergence']
