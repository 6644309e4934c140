"""
Matrix Toolkit - Unit Tests
"""

import numpy as np
import pytest

from easix_predictor import matrix
from easix_predictor.errors import SingularMatrix


class TestBasicOperations:
    """Shape-checked primitives"""

    def test_identity(self):
        assert np.array_equal(matrix.identity(3), np.eye(3))

    def test_identity_rejects_zero_size(self):
        with pytest.raises(ValueError):
            matrix.identity(0)

    def test_transpose(self):
        A = [[1, 2, 3], [4, 5, 6]]
        T = matrix.transpose(A)
        assert T.shape == (3, 2)
        assert T[2, 1] == 6

    def test_add(self):
        assert np.array_equal(matrix.add([[1, 2]], [[3, 4]]), np.array([[4.0, 6.0]]))

    def test_add_shape_mismatch(self):
        with pytest.raises(ValueError):
            matrix.add([[1, 2]], [[1], [2]])

    def test_scalar_multiply(self):
        assert np.array_equal(matrix.scalar_multiply(0.5, [[2, 4]]), np.array([[1.0, 2.0]]))

    def test_multiply(self):
        C = matrix.multiply([[1, 2], [3, 4]], [[5], [6]])
        assert C.shape == (2, 1)
        assert C[0, 0] == 17
        assert C[1, 0] == 39

    def test_multiply_shape_mismatch(self):
        """Inner dimensions must agree"""
        with pytest.raises(ValueError):
            matrix.multiply([[1, 2, 3]], [[1, 2, 3]])

    def test_vectors_are_rejected(self):
        with pytest.raises(ValueError):
            matrix.as_matrix([1.0, 2.0])


class TestInverse:
    """Gauss-Jordan inversion with partial pivoting"""

    def test_two_by_two(self):
        inv = matrix.inverse([[4, 7], [2, 6]])
        assert inv == pytest.approx(np.array([[0.6, -0.7], [-0.2, 0.4]]))

    def test_requires_row_swap(self):
        """Zero on the diagonal is handled by pivoting"""
        inv = matrix.inverse([[0, 1], [1, 0]])
        assert inv == pytest.approx(np.array([[0.0, 1.0], [1.0, 0.0]]))

    def test_round_trip_identity(self):
        rng = np.random.default_rng(7)
        B = rng.normal(size=(5, 5))
        A = B @ B.T + 0.5 * np.eye(5)
        assert matrix.multiply(A, matrix.inverse(A)) == pytest.approx(np.eye(5), abs=1e-10)

    def test_does_not_modify_input(self):
        A = np.array([[2.0, 1.0], [1.0, 3.0]])
        original = A.copy()
        matrix.inverse(A)
        assert np.array_equal(A, original)

    def test_singular_matrix(self):
        with pytest.raises(SingularMatrix) as exc:
            matrix.inverse([[1, 2], [2, 4]])
        assert exc.value.column == 1

    def test_near_singular_below_threshold(self):
        with pytest.raises(SingularMatrix):
            matrix.inverse([[1e-13, 0], [0, 1e-13]])

    def test_non_square(self):
        with pytest.raises(ValueError):
            matrix.inverse([[1, 2, 3], [4, 5, 6]])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
