import torch
import torch.nn.functional as F

from dectlib.errors import ConfigurationError
from dectlib.monitors import relative_error


def _gaussian_window(window_size: int, sigma: float, device: torch.device, dtype: torch.dtype) -> torch.Tensor:
    coords = torch.arange(window_size, device=device, dtype=dtype) - window_size // 2
    g = torch.exp(-(coords ** 2) / (2 * sigma ** 2))
    g /= g.sum()
    return torch.outer(g, g).unsqueeze(0).unsqueeze(0)  # (1, 1, W, W)


def ssim(image_true: torch.Tensor,
         image_test: torch.Tensor,
         data_range: float | None = None,
         window_size: int = 11,
         sigma: float = 1.5,
         k1: float = 0.01,
         k2: float = 0.03) -> float:
    """
    Structural similarity index of two 2D images with a Gaussian window.

    Args:
        image_true (torch.Tensor): Reference image (H, W).
        image_test (torch.Tensor): Image to compare (H, W).
        data_range (float | None): Dynamic range of the reference. Defaults to
            max(image_true) - min(image_true).

    Returns:
        float: Mean SSIM over the image.
    """
    if image_true.shape != image_test.shape:
        raise ConfigurationError(f"Input images must have the same shape. Got {tuple(image_true.shape)} and {tuple(image_test.shape)}")
    if image_true.ndim != 2:
        raise ConfigurationError(f"SSIM expects 2D images, got {image_true.ndim} dimensions.")

    image_test = image_test.to(device=image_true.device, dtype=image_true.dtype)
    if data_range is None:
        data_range = (image_true.max() - image_true.min()).item()
        if data_range == 0:
            return 1.0 if torch.allclose(image_true, image_test) else 0.0

    x = image_true.unsqueeze(0).unsqueeze(0)
    y = image_test.unsqueeze(0).unsqueeze(0)
    window = _gaussian_window(window_size, sigma, x.device, x.dtype)
    pad = window_size // 2

    c1 = (k1 * data_range) ** 2
    c2 = (k2 * data_range) ** 2

    mu_x = F.conv2d(x, window, padding=pad)
    mu_y = F.conv2d(y, window, padding=pad)
    sigma_x = F.conv2d(x * x, window, padding=pad) - mu_x ** 2
    sigma_y = F.conv2d(y * y, window, padding=pad) - mu_y ** 2
    sigma_xy = F.conv2d(x * y, window, padding=pad) - mu_x * mu_y

    ssim_map = ((2 * mu_x * mu_y + c1) * (2 * sigma_xy + c2)) / \
               ((mu_x ** 2 + mu_y ** 2 + c1) * (sigma_x + sigma_y + c2))
    return ssim_map.mean().item()


__all__ = ['ssim', 'relative_error']
