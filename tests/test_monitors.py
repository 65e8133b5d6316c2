import math
import unittest
import torch

from dectlib.errors import ConfigurationError
from dectlib.monitors import (CGTraceEntry, ReconstructionErrorMonitor, ResidualMonitor, check_reference_images,
                             relative_error)
from dectlib.operators import stack_images

DEVICE = torch.device('cuda' if torch.cuda.is_available() else 'cpu')


class TestRelativeError(unittest.TestCase):
    def test_known_value(self):
        ref = torch.tensor([[3.0, 4.0]], dtype=torch.float64, device=DEVICE)
        recon = torch.tensor([[3.0, 0.0]], dtype=torch.float64, device=DEVICE)
        self.assertAlmostEqual(relative_error(ref, recon), 4.0 / 5.0)
        self.assertEqual(relative_error(ref, ref), 0.0)

    def test_zero_reference(self):
        with self.assertRaises(ConfigurationError):
            relative_error(torch.zeros(2, 2), torch.ones(2, 2))

    def test_shape_mismatch(self):
        with self.assertRaises(ConfigurationError):
            relative_error(torch.ones(2, 2), torch.ones(3, 3))


class TestReconstructionErrorMonitor(unittest.TestCase):
    def setUp(self):
        self.ref1 = torch.ones(3, 3, dtype=torch.float64, device=DEVICE)
        self.ref2 = 2 * torch.ones(3, 3, dtype=torch.float64, device=DEVICE)
        self.monitor = ReconstructionErrorMonitor((self.ref1, self.ref2), tol=1e-6)

    def test_exact_iterate(self):
        entry, converged = self.monitor.check(stack_images(self.ref1, self.ref2), rho=0.5, iteration=4)
        self.assertIsInstance(entry, CGTraceEntry)
        self.assertEqual(entry.iteration, 4)
        self.assertEqual(entry.rho, 0.5)
        self.assertEqual(entry.material_errors, (0.0, 0.0))
        self.assertEqual(entry.mean_error, 0.0)
        self.assertTrue(converged)

    def test_mean_of_material_errors(self):
        x = stack_images(0.5 * self.ref1, self.ref2)
        (err1, err2), mean_error = self.monitor.evaluate(x)
        self.assertAlmostEqual(err1, 0.5)
        self.assertAlmostEqual(err2, 0.0)
        self.assertAlmostEqual(mean_error, 0.25)
        _, converged = self.monitor.check(x, rho=1.0, iteration=1)
        self.assertFalse(converged)

    def test_invalid_references(self):
        with self.assertRaises(ConfigurationError):
            ReconstructionErrorMonitor((self.ref1,))
        with self.assertRaises(ConfigurationError):
            ReconstructionErrorMonitor((self.ref1, torch.ones(4, 4)))
        with self.assertRaises(ConfigurationError):
            ReconstructionErrorMonitor((self.ref1, self.ref2), tol=-1.0)

    def test_zero_reference_rejected_at_construction(self):
        zeros = torch.zeros(3, 3, dtype=torch.float64, device=DEVICE)
        with self.assertRaises(ConfigurationError):
            ReconstructionErrorMonitor((self.ref1, zeros))
        with self.assertRaises(ConfigurationError):
            ReconstructionErrorMonitor((zeros, self.ref2))
        with self.assertRaises(ConfigurationError):
            check_reference_images((self.ref1, zeros))
        ref1, ref2 = check_reference_images((self.ref1, self.ref2))
        self.assertIs(ref1, self.ref1)
        self.assertIs(ref2, self.ref2)

    def test_wrong_iterate_length(self):
        with self.assertRaises(ConfigurationError):
            self.monitor.evaluate(torch.zeros(17, dtype=torch.float64, device=DEVICE))


class TestResidualMonitor(unittest.TestCase):
    def test_budget_only(self):
        entry, converged = ResidualMonitor().check(torch.zeros(2), rho=1e-30, iteration=7)
        self.assertFalse(converged)
        self.assertIsNone(entry.mean_error)
        self.assertIsNone(entry.material_errors)

    def test_relative_threshold(self):
        monitor = ResidualMonitor(tol=1e-3, rhs_norm=100.0)
        _, converged = monitor.check(torch.zeros(2), rho=(0.09) ** 2, iteration=1)
        self.assertTrue(converged)
        _, converged = monitor.check(torch.zeros(2), rho=(0.11) ** 2, iteration=2)
        self.assertFalse(converged)

    def test_absolute_threshold(self):
        monitor = ResidualMonitor(tol=1e-3)
        _, converged = monitor.check(torch.zeros(2), rho=1e-8, iteration=1)
        self.assertTrue(converged)
        _, converged = monitor.check(torch.zeros(2), rho=math.pow(2e-3, 2), iteration=2)
        self.assertFalse(converged)


if __name__ == '__main__':
    unittest.main()
