import unittest
import torch
import numpy as np

from dectlib.errors import ConfigurationError
from dectlib.operators import stack_images
from dectlib.projectors import TwoMaterialProjector
from dectlib.simulation import (add_gaussian_noise, blob_phantom, resize_image, rotate_image,
                                simulate_measurements, spot_phantom)

DEVICE = torch.device('cuda' if torch.cuda.is_available() else 'cpu')


class TestPhantoms(unittest.TestCase):
    def test_blob_phantom(self):
        phantom, pixel_size = blob_phantom(64, device=DEVICE)
        self.assertEqual(tuple(phantom.shape), (64, 64))
        self.assertAlmostEqual(pixel_size, 32.0 / 64)
        values = set(torch.unique(phantom).tolist())
        self.assertEqual(values, {0.0, 1.0})
        # Corners lie outside the water disc
        self.assertEqual(phantom[0, 0].item(), 0.0)
        self.assertEqual(phantom[32, 32].item(), 1.0)

    def test_spot_phantom_fills_blob_inserts(self):
        blob, _ = blob_phantom(64, device=DEVICE)
        spots, _ = spot_phantom(64, device=DEVICE)
        self.assertEqual(set(torch.unique(spots).tolist()), {0.0, 1.0})
        self.assertTrue(torch.all(blob[spots == 1] == 0))
        # Three discs of radii 3, 2 and 2 cm
        expected_area = np.pi * (3 ** 2 + 2 ** 2 + 2 ** 2) / (32.0 / 64) ** 2
        self.assertAlmostEqual(spots.sum().item() / expected_area, 1.0, delta=0.1)

    def test_invalid_size(self):
        with self.assertRaises(ConfigurationError):
            blob_phantom(0)


class TestImageTransforms(unittest.TestCase):
    def setUp(self):
        torch.manual_seed(0)

    def test_resize(self):
        image = torch.rand(8, 8, dtype=torch.float64, device=DEVICE)
        self.assertEqual(tuple(resize_image(image, 4).shape), (4, 4))
        self.assertEqual(tuple(resize_image(image, 16).shape), (16, 16))
        torch.testing.assert_close(resize_image(image, 8), image)
        with self.assertRaises(ConfigurationError):
            resize_image(torch.rand(2, 8, 8), 4)

    def test_rotate_quarter_turn(self):
        image = torch.rand(5, 5, dtype=torch.float64, device=DEVICE)
        rotated = rotate_image(image, 90.0)
        torch.testing.assert_close(rotated, torch.rot90(image, 1, dims=(0, 1)), atol=1e-10, rtol=0)

    def test_rotate_zero(self):
        image = torch.rand(5, 5, dtype=torch.float64, device=DEVICE)
        torch.testing.assert_close(rotate_image(image, 0.0), image)


class TestNoise(unittest.TestCase):
    def setUp(self):
        self.m = torch.linspace(-2.0, 4.0, 50, dtype=torch.float64, device=DEVICE)

    def test_noise_free(self):
        torch.testing.assert_close(add_gaussian_noise(self.m, 0.0), self.m)

    def test_reproducible_with_generator(self):
        a = add_gaussian_noise(self.m, 0.1, generator=torch.Generator().manual_seed(7))
        b = add_gaussian_noise(self.m, 0.1, generator=torch.Generator().manual_seed(7))
        torch.testing.assert_close(a, b)
        self.assertFalse(torch.equal(a, self.m))

    def test_noise_scale(self):
        m = torch.full((20000,), 4.0, dtype=torch.float64, device=DEVICE)
        noisy = add_gaussian_noise(m, 0.01, generator=torch.Generator().manual_seed(0))
        self.assertAlmostEqual((noisy - m).std().item(), 0.04, delta=0.004)

    def test_negative_level(self):
        with self.assertRaises(ConfigurationError):
            add_gaussian_noise(self.m, -0.01)


class TestSimulateMeasurements(unittest.TestCase):
    def setUp(self):
        torch.manual_seed(3)
        self.N = 5
        self.projector = TwoMaterialProjector(self.N, np.linspace(-90, 90, 6, endpoint=False), device=DEVICE)
        self.x1 = torch.rand(self.N, self.N, dtype=torch.float64, device=DEVICE)
        self.x2 = torch.rand(self.N, self.N, dtype=torch.float64, device=DEVICE)

    def test_without_rotation_or_noise(self):
        m = simulate_measurements(self.x1, self.x2, self.projector)
        torch.testing.assert_close(m, self.projector.op(stack_images(self.x1, self.x2)))

    def test_rotation_describes_the_same_object(self):
        # A quarter turn maps the pixel grid onto itself, so the rotated simulation
        # must reproduce the unrotated projections.
        m = simulate_measurements(self.x1, self.x2, self.projector, rotation_deg=90.0)
        expected = self.projector.op(stack_images(self.x1, self.x2))
        torch.testing.assert_close(m, expected, atol=1e-9, rtol=0)

    def test_rotation_changes_discretization(self):
        m = simulate_measurements(self.x1, self.x2, self.projector, rotation_deg=45.0)
        expected = self.projector.op(stack_images(self.x1, self.x2))
        self.assertEqual(m.shape, expected.shape)
        self.assertFalse(torch.allclose(m, expected))

    def test_noise(self):
        clean = simulate_measurements(self.x1, self.x2, self.projector)
        noisy = simulate_measurements(self.x1, self.x2, self.projector, noise_level=0.05,
                                      generator=torch.Generator().manual_seed(1))
        self.assertFalse(torch.allclose(clean, noisy))


if __name__ == '__main__':
    unittest.main()
