import unittest
import torch

from dectlib.errors import ConfigurationError
from dectlib.metrics import ssim

DEVICE = torch.device('cuda' if torch.cuda.is_available() else 'cpu')


class TestSSIM(unittest.TestCase):
    def setUp(self):
        torch.manual_seed(0)
        self.image = torch.rand(32, 32, dtype=torch.float64, device=DEVICE)

    def test_identical_images(self):
        self.assertAlmostEqual(ssim(self.image, self.image), 1.0, places=6)

    def test_degrades_with_noise(self):
        slightly = self.image + 0.01 * torch.randn_like(self.image)
        heavily = self.image + 0.5 * torch.randn_like(self.image)
        s_slight = ssim(self.image, slightly)
        s_heavy = ssim(self.image, heavily)
        self.assertLess(s_slight, 1.0)
        self.assertLess(s_heavy, s_slight)

    def test_flat_reference(self):
        flat = torch.ones(8, 8, dtype=torch.float64, device=DEVICE)
        self.assertEqual(ssim(flat, flat.clone()), 1.0)
        self.assertEqual(ssim(flat, 2 * flat), 0.0)

    def test_invalid_inputs(self):
        with self.assertRaises(ConfigurationError):
            ssim(self.image, self.image[:16])
        with self.assertRaises(ConfigurationError):
            ssim(self.image[None], self.image[None])


if __name__ == '__main__':
    unittest.main()
