"""Module for dual-material phantom generation and measurement simulation."""

import math
import torch
import torch.nn.functional as F
from typing import Optional, Tuple

from dectlib.errors import ConfigurationError
from dectlib.operators import stack_images
from dectlib.projectors import TwoMaterialProjector

# The phantom field of view is 32 cm by 32 cm.
FIELD_OF_VIEW_CM = 32.0
WATER_RADIUS_CM = 12.0
INSERT_OFFSET_CM = 5.0 / math.sqrt(2.0)
# (x sign, y sign, radius in cm) for each circular insert
INSERTS = ((1, 1, 3.0), (1, -1, 2.0), (-1, -1, 2.0))


def _phantom_grid(size: int, device, dtype) -> Tuple[torch.Tensor, torch.Tensor, float]:
    if size < 1:
        raise ConfigurationError(f"Phantom size must be positive, got {size}.")
    pixel_size = FIELD_OF_VIEW_CM / size
    coords = (torch.arange(size, device=device, dtype=dtype) - size / 2) * pixel_size
    y, x = torch.meshgrid(coords, coords, indexing='ij')
    return x, y, pixel_size


def _insert_masks(x: torch.Tensor, y: torch.Tensor):
    for sx, sy, radius in INSERTS:
        yield torch.sqrt((x - sx * INSERT_OFFSET_CM) ** 2 + (y - sy * INSERT_OFFSET_CM) ** 2) <= radius


def blob_phantom(size: int, device='cpu', dtype=torch.float64) -> Tuple[torch.Tensor, float]:
    """
    Material 1 phantom: a water-filled disc of 24 cm diameter with three empty
    circular inserts (radii 3, 2 and 2 cm), on a 32 cm field of view.

    Returns:
        (image, pixel_size_cm): Image of shape (size, size) with water = 1 and
        air/inserts = 0, and the physical pixel size in centimetres.
    """
    x, y, pixel_size = _phantom_grid(size, device, dtype)
    phantom = torch.zeros((size, size), device=device, dtype=dtype)
    phantom[torch.sqrt(x ** 2 + y ** 2) < WATER_RADIUS_CM] = 1.0
    for mask in _insert_masks(x, y):
        phantom[mask] = 0.0
    return phantom, pixel_size


def spot_phantom(size: int, device='cpu', dtype=torch.float64) -> Tuple[torch.Tensor, float]:
    """Material 2 phantom: the three insert discs of `blob_phantom` filled with contrast agent (= 1)."""
    x, y, pixel_size = _phantom_grid(size, device, dtype)
    phantom = torch.zeros((size, size), device=device, dtype=dtype)
    for mask in _insert_masks(x, y):
        phantom[mask] = 1.0
    return phantom, pixel_size


def resize_image(image: torch.Tensor, size: int, mode: str = 'nearest') -> torch.Tensor:
    """Resizes a 2D image to (size, size)."""
    if image.ndim != 2:
        raise ConfigurationError(f"resize_image expects a 2D image, got shape {tuple(image.shape)}.")
    if size < 1:
        raise ConfigurationError(f"Target size must be positive, got {size}.")
    if tuple(image.shape) == (size, size):
        return image.clone()
    return F.interpolate(image[None, None], size=(size, size), mode=mode)[0, 0]


def rotate_image(image: torch.Tensor, angle_deg: float) -> torch.Tensor:
    """
    Rotates a 2D image counter-clockwise by `angle_deg` degrees about its centre,
    with bilinear interpolation. The output is cropped to the input size and
    filled with zeros outside the rotated support.
    """
    if image.ndim != 2:
        raise ConfigurationError(f"rotate_image expects a 2D image, got shape {tuple(image.shape)}.")
    if angle_deg == 0:
        return image.clone()
    c = math.cos(math.radians(angle_deg))
    s = math.sin(math.radians(angle_deg))
    # affine_grid works in (x right, y down) coordinates
    theta = torch.tensor([[[c, -s, 0.0], [s, c, 0.0]]], device=image.device, dtype=image.dtype)
    batch = image[None, None]
    grid = F.affine_grid(theta, list(batch.shape), align_corners=False)
    return F.grid_sample(batch, grid, mode='bilinear', padding_mode='zeros', align_corners=False)[0, 0]


def add_gaussian_noise(measurements: torch.Tensor,
                       noise_level: float,
                       generator: Optional[torch.Generator] = None) -> torch.Tensor:
    """Returns m + noise_level * max|m| * n, with n standard normal."""
    if not noise_level >= 0:
        raise ConfigurationError(f"noise_level must be non-negative, got {noise_level}.")
    if noise_level == 0:
        return measurements.clone()
    noise = torch.randn(measurements.shape, generator=generator, dtype=measurements.dtype, device='cpu')
    return measurements + noise_level * measurements.abs().max() * noise.to(measurements.device)


def simulate_measurements(image1: torch.Tensor,
                          image2: torch.Tensor,
                          projector: TwoMaterialProjector,
                          rotation_deg: float = 0.0,
                          noise_level: float = 0.0,
                          generator: Optional[torch.Generator] = None) -> torch.Tensor:
    """
    Simulates noisy two-energy measurements of a pair of material images.

    The images are rotated by `rotation_deg` and projected with the geometry rotated
    by the same amount, which yields projections of the unrotated object that were
    computed on a different discretization than the one used for reconstruction.

    Args:
        image1, image2 (torch.Tensor): Material images of shape (N, N).
        projector (TwoMaterialProjector): The reconstruction projector.
        rotation_deg (float): Desynchronization rotation in degrees.
        noise_level (float): Relative Gaussian noise level.
        generator (Optional[torch.Generator]): Random source for the noise.

    Returns:
        torch.Tensor: Measurement vector of length projector.num_measurements.
    """
    if rotation_deg:
        image1 = rotate_image(image1, rotation_deg)
        image2 = rotate_image(image2, rotation_deg)
        projector = projector.with_rotation(rotation_deg)
    m = projector.op(stack_images(image1, image2))
    return add_gaussian_noise(m, noise_level, generator)


__all__ = ['blob_phantom', 'spot_phantom', 'resize_image', 'rotate_image',
           'add_gaussian_noise', 'simulate_measurements']
