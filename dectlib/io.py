"""Reading phantom images and writing reconstructions as PNG files."""

import os
import numpy as np
import torch
import matplotlib.pyplot as plt
from typing import List, Optional, Tuple

from dectlib.errors import ConfigurationError
from dectlib.simulation import resize_image


def _to_numpy(image) -> np.ndarray:
    if isinstance(image, torch.Tensor):
        return image.detach().cpu().numpy()
    return np.asarray(image)


def load_material_image(filepath: str, size: Optional[int] = None, scale: float = 255.0,
                        dtype=torch.float64) -> torch.Tensor:
    """
    Loads the first channel of an image file as a float tensor.

    PNG files come back from matplotlib as floats in [0, 1]; they are multiplied by
    `scale` so that 8-bit images keep their 0..255 value range. Integer images are
    cast without scaling. With `size` given, the image is resized (nearest
    neighbour) to (size, size).
    """
    if not os.path.exists(filepath):
        raise FileNotFoundError(f"Image file not found: {filepath}")
    data = plt.imread(filepath)
    if data.ndim == 3:
        data = data[:, :, 0]
    if np.issubdtype(data.dtype, np.floating):
        data = data * scale
    image = torch.as_tensor(np.ascontiguousarray(data), dtype=dtype)
    if size is not None:
        image = resize_image(image, size, mode='nearest')
    return image


def load_material_images(filepath1: str, filepath2: str, size: Optional[int] = None,
                         scale: float = 255.0, dtype=torch.float64) -> Tuple[torch.Tensor, torch.Tensor]:
    """Loads the two material phantoms, e.g. 'hyA.png' and 'hyB.png'."""
    image1 = load_material_image(filepath1, size=size, scale=scale, dtype=dtype)
    image2 = load_material_image(filepath2, size=size, scale=scale, dtype=dtype)
    if image1.shape != image2.shape:
        raise ConfigurationError(f"Material images differ in shape: {tuple(image1.shape)} vs {tuple(image2.shape)}. Pass `size` to resize both.")
    return image1, image2


def normalize_images(*images) -> List[np.ndarray]:
    """Scales all images jointly to [0, 1] using their common minimum and maximum."""
    arrays = [_to_numpy(im).astype(np.float64) for im in images]
    low = min(a.min() for a in arrays)
    high = max(a.max() for a in arrays)
    if high == low:
        return [np.zeros_like(a) for a in arrays]
    return [(a - low) / (high - low) for a in arrays]


def save_reconstruction_png(image, filepath: str):
    """
    Writes an image already normalized to [0, 1] as an 8-bit grey-level PNG.

    matplotlib stores the file as RGBA with R = G = B = the grey level and an opaque
    alpha channel, not as a single-channel image. `load_material_image` reads the
    first channel, so the grey values round-trip unchanged.
    """
    data = np.clip(_to_numpy(image), 0.0, 1.0)
    data = np.round(255 * data).astype(np.uint8)
    plt.imsave(filepath, data, cmap='gray', vmin=0, vmax=255)


def save_decomposition_pngs(reference1, reference2, recon1, recon2, output_dir: str,
                            names: Tuple[str, str] = ('CG1_reco.png', 'CG2_reco.png')) -> Tuple[str, str]:
    """
    Saves the two reconstructions as PNGs, normalized jointly with the reference
    phantoms so that all four images share one grey scale.

    Returns:
        The paths of the two written files.
    """
    os.makedirs(output_dir, exist_ok=True)
    _, _, im3, im4 = normalize_images(reference1, reference2, recon1, recon2)
    path1 = os.path.join(output_dir, names[0])
    path2 = os.path.join(output_dir, names[1])
    save_reconstruction_png(im3, path1)
    save_reconstruction_png(im4, path2)
    return path1, path2


__all__ = ['load_material_image', 'load_material_images', 'normalize_images',
           'save_reconstruction_png', 'save_decomposition_pngs']
