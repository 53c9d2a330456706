import numpy as np
import scipy.sparse as sp
import unittest
from unittest import mock

import colorize
from colorize import SolverError, assemble_system, jacobi_preconditioner, solve_system


class TestSolveSystem(unittest.TestCase):
    def test_two_by_two_propagation(self):
        """A single scribble at (0, 0) spreads over a flat 2×2 image."""
        y = np.full(4, 100.0)
        u = np.array([10.0, 0.0, 0.0, 0.0])
        v = np.array([-10.0, 0.0, 0.0, 0.0])
        has_color = np.array([True, False, False, False])

        A, bu, bv = assemble_system(y, u, v, has_color, 2, 2, 2.0, progress=False)
        U, V = solve_system(A, bu, bv)

        for name, x, target in (("U", U, 10.0), ("V", V, -10.0)):
            with self.subTest(channel=name):
                np.testing.assert_allclose(x[1:], target, atol=1e-6)
                # adjacent pixels are no further from the scribble than the diagonal one
                self.assertLessEqual(abs(x[1] - target), abs(x[3] - target) + 1e-9)
                self.assertLessEqual(abs(x[2] - target), abs(x[3] - target) + 1e-9)

    def test_solution_satisfies_system(self):
        rng = np.random.default_rng(11)
        nrows, ncols = 6, 6
        n = nrows * ncols
        y = rng.uniform(0, 255, n)
        u = rng.uniform(0, 255, n)
        v = rng.uniform(0, 255, n)
        has_color = rng.random(n) < 0.2
        has_color[0] = True

        A, bu, bv = assemble_system(y, u, v, has_color, nrows, ncols, 2.0, progress=False)
        U, V = solve_system(A, bu, bv)

        np.testing.assert_allclose(A @ U, bu, rtol=1e-6, atol=1e-6)
        np.testing.assert_allclose(A @ V, bv, rtol=1e-6, atol=1e-6)

    def test_identity_system(self):
        bu = np.arange(5, dtype=np.float64)
        bv = -bu
        U, V = solve_system(sp.identity(5, format="csr"), bu, bv)
        np.testing.assert_allclose(U, bu)
        np.testing.assert_allclose(V, bv)

    def test_iteration_budget_exhausted(self):
        """Starving the solver of iterations is reported as a failure."""
        rng = np.random.default_rng(5)
        n = 25
        y = rng.uniform(0, 255, n)
        u = rng.uniform(0, 255, n)
        has_color = np.zeros(n, dtype=bool)
        has_color[12] = True
        A, bu, bv = assemble_system(y, u, u, has_color, 5, 5, 2.0, progress=False)

        with self.assertRaises(SolverError):
            solve_system(A, bu, bv, maxiter=1)

    def test_failure_on_second_channel(self):
        A = sp.identity(3, format="csr")
        b = np.ones(3)
        outcomes = [(b.copy(), 0), (b.copy(), 7)]
        with mock.patch.object(colorize.spla, "bicgstab", side_effect=outcomes) as solver:
            with self.assertRaisesRegex(SolverError, "V channel"):
                solve_system(A, b, b)
        self.assertEqual(solver.call_count, 2)

    def test_non_finite_solution_is_failure(self):
        A = sp.identity(3, format="csr")
        b = np.ones(3)
        bad = np.array([1.0, np.nan, 1.0])
        with mock.patch.object(colorize.spla, "bicgstab", return_value=(bad, 0)):
            with self.assertRaisesRegex(SolverError, "U channel"):
                solve_system(A, b, b)

    def test_preconditioner_shared_between_channels(self):
        A = sp.identity(3, format="csr") * 2.0
        b = np.ones(3)
        with mock.patch.object(colorize.spla, "bicgstab", return_value=(b / 2, 0)) as solver:
            solve_system(A, b, b)
        first, second = solver.call_args_list
        self.assertIs(first.kwargs["M"], second.kwargs["M"])
        self.assertIs(first.args[0], second.args[0])


class TestJacobiPreconditioner(unittest.TestCase):
    def test_inverts_diagonal(self):
        A = sp.diags([2.0, 4.0, 0.0], format="csr")
        M = jacobi_preconditioner(A)
        np.testing.assert_allclose(M.diagonal(), [0.5, 0.25, 1.0])


if __name__ == '__main__':
    unittest.main()
