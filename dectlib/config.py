"""
Configuration classes for dual-energy material decomposition.

Every run is described by an explicit `ReconstructionConfig`; nothing is kept in
module-level state between runs.
"""

import math
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import torch

from dectlib.errors import ConfigurationError


@dataclass
class AttenuationCoefficients:
    """Mass attenuation coefficients (NIST, divided by density) mixing materials into energy channels."""
    c11: float = 1.491  # PVC    30kV (low energy)
    c12: float = 8.561  # Iodine 30kV
    c21: float = 0.456  # PVC    50kV (high energy)
    c22: float = 12.32  # Iodine 50kV

    def matrix(self) -> torch.Tensor:
        return torch.tensor([[self.c11, self.c12], [self.c21, self.c22]], dtype=torch.float64)

    def validate(self):
        values = (self.c11, self.c12, self.c21, self.c22)
        if not all(math.isfinite(float(v)) for v in values):
            raise ConfigurationError(f"Attenuation coefficients must be finite, got {values}.")


@dataclass
class GeometryConfig:
    """Scan geometry. Angles are in degrees."""
    image_size: int = 512
    num_angles: int = 65
    angle0: float = -90.0
    angular_span: float = 180.0
    rotation_deg: float = 45.0  # used only when simulating data
    num_detector_pixels: Optional[int] = None

    def angles(self) -> torch.Tensor:
        """Ordered angle sequence angle0 + k/num_angles * angular_span, k = 0..num_angles-1."""
        self.validate()
        return self.angle0 + torch.arange(self.num_angles, dtype=torch.float64) / self.num_angles * self.angular_span

    def validate(self):
        if isinstance(self.image_size, bool) or not isinstance(self.image_size, (int, np.integer)) or self.image_size < 1:
            raise ConfigurationError(f"image_size must be a positive integer, got {self.image_size!r}.")
        if self.num_angles < 1:
            raise ConfigurationError(f"num_angles must be at least 1, got {self.num_angles}.")
        if self.num_detector_pixels is not None and self.num_detector_pixels < 1:
            raise ConfigurationError(f"num_detector_pixels must be positive, got {self.num_detector_pixels}.")


@dataclass
class RegularizationConfig:
    """Tikhonov block coupling weights. `beta` defaults to alpha/2."""
    alpha: float = 500.0
    beta: Optional[float] = None

    def __post_init__(self):
        if self.beta is None:
            self.beta = self.alpha / 2

    def validate(self):
        validate_regularization(self.alpha, self.beta)


@dataclass
class IterationConfig:
    """CG budget and stopping thresholds."""
    max_iters: int = 42
    tol: float = 1e-6
    residual_tol: Optional[float] = None  # ground-truth-free stopping, relative to ||b||

    def validate(self):
        if isinstance(self.max_iters, bool) or not isinstance(self.max_iters, (int, np.integer)) or self.max_iters < 1:
            raise ConfigurationError(f"max_iters must be a positive integer, got {self.max_iters!r}.")
        if not self.tol >= 0:
            raise ConfigurationError(f"tol must be non-negative, got {self.tol}.")
        if self.residual_tol is not None and not self.residual_tol >= 0:
            raise ConfigurationError(f"residual_tol must be non-negative, got {self.residual_tol}.")


@dataclass
class NoiseConfig:
    """Additive Gaussian noise relative to the peak measurement magnitude."""
    noise_level: float = 0.01
    seed: Optional[int] = None

    def validate(self):
        if not self.noise_level >= 0:
            raise ConfigurationError(f"noise_level must be non-negative, got {self.noise_level}.")


@dataclass
class ReconstructionConfig:
    geometry: GeometryConfig = field(default_factory=GeometryConfig)
    coefficients: AttenuationCoefficients = field(default_factory=AttenuationCoefficients)
    regularization: RegularizationConfig = field(default_factory=RegularizationConfig)
    iteration: IterationConfig = field(default_factory=IterationConfig)
    noise: NoiseConfig = field(default_factory=NoiseConfig)
    device: str = 'cpu'
    dtype: torch.dtype = torch.float64
    verbose: bool = False

    def validate(self):
        self.geometry.validate()
        self.coefficients.validate()
        self.regularization.validate()
        self.iteration.validate()
        self.noise.validate()
        if not self.dtype.is_floating_point:
            raise ConfigurationError(f"dtype must be a real floating point type, got {self.dtype}.")
        return self


def validate_regularization(alpha: float, beta: float):
    """Raises ConfigurationError unless alpha > 0 and |beta| < alpha (Q2 positive definite)."""
    if not (math.isfinite(alpha) and math.isfinite(beta)):
        raise ConfigurationError(f"Regularization parameters must be finite, got alpha={alpha}, beta={beta}.")
    if alpha <= 0:
        raise ConfigurationError(f"alpha must be positive, got {alpha}.")
    if abs(beta) >= alpha:
        raise ConfigurationError(f"|beta| must be smaller than alpha for a positive definite Q2, got alpha={alpha}, beta={beta}.")


__all__ = ['AttenuationCoefficients', 'GeometryConfig', 'RegularizationConfig', 'IterationConfig',
           'NoiseConfig', 'ReconstructionConfig', 'validate_regularization']
