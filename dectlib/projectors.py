"""Matrix-free parallel-beam projectors for single- and two-material CT."""

import math
import numpy as np
import torch
from typing import Optional, Sequence, Union

from dectlib.config import AttenuationCoefficients
from dectlib.errors import ConfigurationError
from dectlib.operators import Operator, split_stacked, stack_images


def default_detector_count(image_size: int) -> int:
    """
    Number of detector bins needed so that every pixel of an (N, N) image projects
    inside the detector at every angle.

    Same rule as MATLAB's `radon`: 2*ceil(norm([N N] - floor(([N N]-1)/2) - 1)) + 3.
    """
    half_extent = image_size - (image_size - 1) // 2 - 1
    return 2 * int(math.ceil(math.sqrt(2.0) * half_extent)) + 3


def _as_angle_tensor(angles_deg) -> torch.Tensor:
    angles = torch.as_tensor(np.asarray(angles_deg, dtype=np.float64).reshape(-1))
    if angles.numel() == 0:
        raise ConfigurationError("The angle set must contain at least one angle.")
    if not torch.isfinite(angles).all():
        raise ConfigurationError("All projection angles must be finite.")
    return angles


def _check_image_size(image_size) -> int:
    if isinstance(image_size, bool) or not isinstance(image_size, (int, np.integer)) or image_size < 1:
        raise ConfigurationError(f"Grid size N must be a positive integer, got {image_size!r}.")
    return int(image_size)


class ParallelBeamProjector(Operator):
    """
    Pixel-driven parallel-beam line-integral transform of a single (N, N) image.

    Every pixel centre (x, y), with x pointing right, y pointing up and the origin at
    pixel ((N-1)//2, (N-1)//2), projects onto the detector coordinate
    t = x*cos(theta) + y*sin(theta). The pixel value is split between the two
    nearest detector bins by linear interpolation. `op_adj` gathers with the very
    same indices and weights, so it is the exact transpose of `op`.
    """
    def __init__(self,
                 image_size: int,
                 angles_deg: Union[Sequence[float], np.ndarray, torch.Tensor],
                 num_detector_pixels: Optional[int] = None,
                 device: Union[str, torch.device] = 'cpu'):
        """
        Args:
            image_size (int): Grid size N of the square image.
            angles_deg: Ordered projection angles in degrees.
            num_detector_pixels (Optional[int]): Detector bins per angle. Defaults to
                `default_detector_count(image_size)`.
            device: Torch device the projection tables are built on.
        """
        self.image_size = _check_image_size(image_size)
        self.device = torch.device(device)
        self.angles_deg = _as_angle_tensor(angles_deg)
        self.angles_rad = torch.deg2rad(self.angles_deg).to(self.device)
        self.num_angles = self.angles_deg.shape[0]

        if num_detector_pixels is None:
            num_detector_pixels = default_detector_count(self.image_size)
        if num_detector_pixels < 1:
            raise ConfigurationError(f"num_detector_pixels must be positive, got {num_detector_pixels}.")
        self.num_detector_pixels = int(num_detector_pixels)
        self.image_shape = (self.image_size, self.image_size)
        self.sinogram_shape = (self.num_angles, self.num_detector_pixels)

        N = self.image_size
        center = (N - 1) // 2
        idx = torch.arange(N, device=self.device, dtype=torch.float64)
        rows, cols = torch.meshgrid(idx, idx, indexing='ij')
        self._grid_x = (cols - center).reshape(-1)
        self._grid_y = (center - rows).reshape(-1)
        self.detector_center = (self.num_detector_pixels - 1) // 2

    def _interpolation_table(self, angle_index: int, dtype: torch.dtype):
        theta = self.angles_rad[angle_index]
        pos = self._grid_x * torch.cos(theta) + self._grid_y * torch.sin(theta) + self.detector_center
        lower = torch.floor(pos)
        frac = pos - lower
        lower = lower.long()
        upper = lower + 1

        D = self.num_detector_pixels
        w_lower = torch.where((lower >= 0) & (lower < D), 1.0 - frac, torch.zeros_like(frac))
        w_upper = torch.where((upper >= 0) & (upper < D), frac, torch.zeros_like(frac))
        return lower.clamp(0, D - 1), upper.clamp(0, D - 1), w_lower.to(dtype), w_upper.to(dtype)

    def op(self, image: torch.Tensor) -> torch.Tensor:
        """
        Forward projection.

        Args:
            image (torch.Tensor): Image of shape (N, N).

        Returns:
            torch.Tensor: Sinogram of shape (num_angles, num_detector_pixels).
        """
        if tuple(image.shape) != self.image_shape:
            raise ConfigurationError(f"Input image shape {tuple(image.shape)} must match operator's image shape {self.image_shape}.")
        flat = image.to(self.device).reshape(-1)
        sinogram = torch.zeros(self.sinogram_shape, device=self.device, dtype=flat.dtype)
        for i in range(self.num_angles):
            lower, upper, w_lower, w_upper = self._interpolation_table(i, flat.dtype)
            sinogram[i].index_add_(0, lower, w_lower * flat)
            sinogram[i].index_add_(0, upper, w_upper * flat)
        return sinogram

    def op_adj(self, sinogram: torch.Tensor) -> torch.Tensor:
        """
        Back-projection, the exact transpose of `op`.

        Args:
            sinogram (torch.Tensor): Sinogram of shape (num_angles, num_detector_pixels).

        Returns:
            torch.Tensor: Image of shape (N, N).
        """
        if tuple(sinogram.shape) != self.sinogram_shape:
            raise ConfigurationError(f"Input sinogram shape {tuple(sinogram.shape)} must match operator's sinogram shape {self.sinogram_shape}.")
        sinogram = sinogram.to(self.device)
        image = torch.zeros(self.image_size * self.image_size, device=self.device, dtype=sinogram.dtype)
        for i in range(self.num_angles):
            lower, upper, w_lower, w_upper = self._interpolation_table(i, sinogram.dtype)
            row = sinogram[i]
            image += w_lower * row[lower] + w_upper * row[upper]
        return image.view(self.image_shape)


class TwoMaterialProjector(Operator):
    """
    Forward model of a two-material, two-energy acquisition.

    Each material image is projected with the same `ParallelBeamProjector` and the
    two sinograms are mixed by the attenuation matrix [[c11, c12], [c21, c22]]
    into a low-energy and a high-energy channel:

        m_low  = c11 * R x1 + c12 * R x2
        m_high = c21 * R x1 + c22 * R x2

    Inputs are stacked image vectors of length 2*N^2 and outputs are measurement
    vectors of length 2*num_angles*num_detector_pixels, ordered (channel, angle,
    detector).
    """
    def __init__(self,
                 image_size: int,
                 angles_deg: Union[Sequence[float], np.ndarray, torch.Tensor],
                 coefficients: Union[AttenuationCoefficients, Sequence[float]] = None,
                 num_detector_pixels: Optional[int] = None,
                 rotation_deg: float = 0.0,
                 device: Union[str, torch.device] = 'cpu'):
        """
        Args:
            image_size (int): Grid size N.
            angles_deg: Reconstruction angles in degrees.
            coefficients: Attenuation coefficients, either an `AttenuationCoefficients`
                or a flat sequence (c11, c12, c21, c22). Defaults to the PVC/iodine table.
            num_detector_pixels (Optional[int]): Detector bins per angle.
            rotation_deg (float): Rotation of the acquisition geometry in degrees.
                Non-zero only for data simulation.
            device: Torch device.
        """
        if coefficients is None:
            coefficients = AttenuationCoefficients()
        elif not isinstance(coefficients, AttenuationCoefficients):
            values = [float(c) for c in np.asarray(coefficients, dtype=np.float64).reshape(-1)]
            if len(values) != 4:
                raise ConfigurationError(f"Expected 4 attenuation coefficients (c11, c12, c21, c22), got {len(values)}.")
            coefficients = AttenuationCoefficients(*values)
        coefficients.validate()
        self.coefficients = coefficients

        self.angles_deg = _as_angle_tensor(angles_deg)
        self.rotation_deg = float(rotation_deg)
        self.radon = ParallelBeamProjector(image_size,
                                           self.angles_deg + self.rotation_deg,
                                           num_detector_pixels=num_detector_pixels,
                                           device=device)
        self.image_size = self.radon.image_size
        self.device = self.radon.device
        self.num_angles = self.radon.num_angles
        self.num_detector_pixels = self.radon.num_detector_pixels
        self.measurement_shape = (2, self.num_angles, self.num_detector_pixels)
        self.num_measurements = 2 * self.num_angles * self.num_detector_pixels
        self.num_unknowns = 2 * self.image_size * self.image_size

    def with_rotation(self, rotation_deg: float) -> 'TwoMaterialProjector':
        """Returns a copy of this projector with its geometry rotated by `rotation_deg` degrees."""
        return TwoMaterialProjector(self.image_size,
                                    self.angles_deg,
                                    coefficients=self.coefficients,
                                    num_detector_pixels=self.num_detector_pixels,
                                    rotation_deg=self.rotation_deg + rotation_deg,
                                    device=self.device)

    def op(self, x: torch.Tensor) -> torch.Tensor:
        x1, x2 = split_stacked(x.to(self.device), self.image_size)
        s1 = self.radon.op(x1)
        s2 = self.radon.op(x2)
        c = self.coefficients
        m_low = c.c11 * s1 + c.c12 * s2
        m_high = c.c21 * s1 + c.c22 * s2
        return torch.stack((m_low, m_high)).reshape(-1)

    def op_adj(self, m: torch.Tensor) -> torch.Tensor:
        if m.ndim != 1 or m.shape[0] != self.num_measurements:
            raise ConfigurationError(f"Measurement vector must have length {self.num_measurements}, got shape {tuple(m.shape)}.")
        channels = m.to(self.device).view(self.measurement_shape)
        c = self.coefficients
        y1 = c.c11 * channels[0] + c.c21 * channels[1]
        y2 = c.c12 * channels[0] + c.c22 * channels[1]
        return stack_images(self.radon.op_adj(y1), self.radon.op_adj(y2))


__all__ = ['ParallelBeamProjector', 'TwoMaterialProjector', 'default_detector_count']
