import os
import tempfile
import unittest

import numpy as np
import torch
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from dectlib.errors import ConfigurationError
from dectlib.io import (load_material_image, load_material_images, normalize_images,
                        save_decomposition_pngs, save_reconstruction_png)


class TestPNGRoundTrip(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)

    def test_save_and_load(self):
        image = np.linspace(0.0, 1.0, 64).reshape(8, 8)
        path = os.path.join(self.tmpdir.name, 'material.png')
        save_reconstruction_png(image, path)
        self.assertTrue(os.path.exists(path))

        loaded = load_material_image(path)
        self.assertEqual(tuple(loaded.shape), (8, 8))
        self.assertEqual(loaded.dtype, torch.float64)
        expected = torch.as_tensor(np.round(255 * image))
        torch.testing.assert_close(loaded, expected, atol=1.0, rtol=0)

    def test_saved_png_is_grey_rgba(self):
        image = np.linspace(0.0, 1.0, 16).reshape(4, 4)
        path = os.path.join(self.tmpdir.name, 'grey.png')
        save_reconstruction_png(image, path)
        data = plt.imread(path)
        self.assertEqual(data.shape, (4, 4, 4))
        np.testing.assert_allclose(data[:, :, 0], data[:, :, 1])
        np.testing.assert_allclose(data[:, :, 0], data[:, :, 2])
        np.testing.assert_allclose(data[:, :, 3], np.ones((4, 4)))

    def test_load_with_resize(self):
        path = os.path.join(self.tmpdir.name, 'material.png')
        save_reconstruction_png(np.eye(8), path)
        loaded = load_material_image(path, size=4)
        self.assertEqual(tuple(loaded.shape), (4, 4))

    def test_load_pair(self):
        p1 = os.path.join(self.tmpdir.name, 'hyA.png')
        p2 = os.path.join(self.tmpdir.name, 'hyB.png')
        p3 = os.path.join(self.tmpdir.name, 'small.png')
        save_reconstruction_png(np.zeros((6, 6)), p1)
        save_reconstruction_png(np.ones((6, 6)), p2)
        save_reconstruction_png(np.ones((4, 4)), p3)
        a, b = load_material_images(p1, p2)
        self.assertEqual(a.shape, b.shape)
        self.assertAlmostEqual(b.max().item(), 255.0, delta=1.0)
        with self.assertRaises(ConfigurationError):
            load_material_images(p1, p3)
        a, c = load_material_images(p1, p3, size=4)
        self.assertEqual(a.shape, c.shape)

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_material_image(os.path.join(self.tmpdir.name, 'missing.png'))

    def test_save_decomposition(self):
        ref1 = torch.ones(8, 8)
        ref2 = torch.zeros(8, 8)
        rec1 = 0.9 * torch.ones(8, 8)
        rec2 = 0.1 * torch.ones(8, 8)
        out_dir = os.path.join(self.tmpdir.name, 'out')
        path1, path2 = save_decomposition_pngs(ref1, ref2, rec1, rec2, out_dir)
        self.assertEqual(os.path.basename(path1), 'CG1_reco.png')
        self.assertEqual(os.path.basename(path2), 'CG2_reco.png')
        self.assertTrue(os.path.exists(path1) and os.path.exists(path2))


class TestNormalize(unittest.TestCase):
    def test_joint_range(self):
        a, b = normalize_images(np.array([0.0, 2.0]), torch.tensor([4.0, 1.0]))
        np.testing.assert_allclose(a, [0.0, 0.5])
        np.testing.assert_allclose(b, [1.0, 0.25])

    def test_constant_images(self):
        a, = normalize_images(np.full((2, 2), 3.0))
        np.testing.assert_allclose(a, np.zeros((2, 2)))


if __name__ == '__main__':
    unittest.main()
