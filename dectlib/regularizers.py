import torch

from dectlib.config import validate_regularization
from dectlib.errors import ConfigurationError
from dectlib.operators import Operator


class BlockCouplingRegularizer(Operator):
    """
    Cross-material Tikhonov operator Q2 = P kron I_{N^2}, with P = [[alpha, beta], [beta, alpha]].

    Applied in closed form on the two blocks of the stacked vector,
    Q2 [x1; x2] = [alpha*x1 + beta*x2; beta*x1 + alpha*x2], so the cost stays linear
    in N^2 and Q2 is never materialized. Q2 is symmetric, hence `op_adj` equals `op`.
    """
    def __init__(self, alpha: float, beta: float, image_size: int):
        """
        Args:
            alpha (float): Diagonal weight, must be positive.
            beta (float): Cross-material weight, |beta| < alpha.
            image_size (int): Grid size N; the block length is N^2.
        """
        validate_regularization(alpha, beta)
        if image_size < 1:
            raise ConfigurationError(f"Grid size N must be positive, got {image_size}.")
        self.alpha = float(alpha)
        self.beta = float(beta)
        self.image_size = int(image_size)
        self.block_size = self.image_size * self.image_size

    @property
    def matrix(self) -> torch.Tensor:
        """The 2x2 coupling matrix P."""
        return torch.tensor([[self.alpha, self.beta], [self.beta, self.alpha]], dtype=torch.float64)

    def op(self, x: torch.Tensor) -> torch.Tensor:
        if x.ndim != 1 or x.shape[0] != 2 * self.block_size:
            raise ConfigurationError(f"Stacked vector must have length {2 * self.block_size}, got shape {tuple(x.shape)}.")
        x1 = x[:self.block_size]
        x2 = x[self.block_size:]
        return torch.cat((self.alpha * x1 + self.beta * x2, self.beta * x1 + self.alpha * x2))

    def op_adj(self, x: torch.Tensor) -> torch.Tensor:
        return self.op(x)

    def value(self, x: torch.Tensor) -> torch.Tensor:
        """Quadratic penalty 0.5 * x^T Q2 x."""
        return 0.5 * torch.dot(x, self.op(x))


__all__ = ['BlockCouplingRegularizer']
