"""Module for defining the linear Operator interface and its combinators."""

import torch
from abc import ABC, abstractmethod
from typing import Tuple

from dectlib.errors import ConfigurationError


# Operator Base Class
class Operator(ABC):
    @abstractmethod
    def op(self, x): pass
    @abstractmethod
    def op_adj(self, y): pass


def stack_images(image1: torch.Tensor, image2: torch.Tensor) -> torch.Tensor:
    """
    Builds the stacked image vector [image1(:); image2(:)] of length 2*N*N.

    Both images are flattened in row-major order, which is the pixel order every
    operator in dectlib assumes.
    """
    if image1.shape != image2.shape:
        raise ConfigurationError(f"Material images must have the same shape, got {tuple(image1.shape)} and {tuple(image2.shape)}.")
    if image1.ndim != 2 or image1.shape[0] != image1.shape[1]:
        raise ConfigurationError(f"Material images must be square 2D arrays, got shape {tuple(image1.shape)}.")
    return torch.cat((image1.reshape(-1), image2.reshape(-1)))


def split_stacked(x: torch.Tensor, image_size: int) -> Tuple[torch.Tensor, torch.Tensor]:
    """Splits a stacked vector into its two (N, N) material images (views, not copies)."""
    block = image_size * image_size
    if x.ndim != 1 or x.shape[0] != 2 * block:
        raise ConfigurationError(f"Stacked vector must have length 2*N^2 = {2 * block} for N={image_size}, got shape {tuple(x.shape)}.")
    return x[:block].view(image_size, image_size), x[block:].view(image_size, image_size)


class NormalOperator(Operator):
    """
    The Gram operator A^T A of a linear operator A.

    Self-adjoint by construction, so `op_adj` is the same map as `op`.
    """
    def __init__(self, operator: Operator):
        self.operator = operator
        self.image_size = getattr(operator, 'image_size', None)

    def op(self, x: torch.Tensor) -> torch.Tensor:
        return self.operator.op_adj(self.operator.op(x))

    def op_adj(self, x: torch.Tensor) -> torch.Tensor:
        return self.op(x)


class SumOperator(Operator):
    """Sum of linear operators acting on the same space: (A_1 + ... + A_n) x."""
    def __init__(self, *operators: Operator):
        if len(operators) == 0:
            raise ConfigurationError("SumOperator needs at least one operand.")
        self.operators = operators
        sizes = [getattr(A, 'image_size', None) for A in operators]
        self.image_size = next((s for s in sizes if s is not None), None)

    @staticmethod
    def _accumulate(outputs):
        total = outputs[0].clone()
        for i, out in enumerate(outputs[1:], start=1):
            if out.shape != total.shape:
                raise ConfigurationError(f"SumOperator operand {i} returned shape {tuple(out.shape)}, expected {tuple(total.shape)}.")
            total.add_(out)
        return total

    def op(self, x: torch.Tensor) -> torch.Tensor:
        return self._accumulate([A.op(x) for A in self.operators])

    def op_adj(self, y: torch.Tensor) -> torch.Tensor:
        return self._accumulate([A.op_adj(y) for A in self.operators])


def build_normal_equation_operator(projector: Operator, regularizer: Operator) -> SumOperator:
    """
    Composes H = A^T A + Q2 for the two-material Tikhonov problem.

    Args:
        projector: The two-material projection operator A, at the unrotated
            reconstruction geometry.
        regularizer: The block coupling regularizer Q2.

    Returns:
        SumOperator: The normal-equation operator H.
    """
    proj_size = getattr(projector, 'image_size', None)
    reg_size = getattr(regularizer, 'image_size', None)
    if proj_size is not None and reg_size is not None and proj_size != reg_size:
        raise ConfigurationError(f"Projector image size ({proj_size}) does not match regularizer image size ({reg_size}).")
    return SumOperator(NormalOperator(projector), regularizer)


__all__ = ['Operator', 'NormalOperator', 'SumOperator', 'build_normal_equation_operator',
           'stack_images', 'split_stacked']
