"""
EASIX Landmark Predictor - Matrix Toolkit
=========================================

Small dense linear-algebra helpers used by the BLUP step.

All matrices are 2-D float64 numpy arrays. Shapes are checked on entry so a
mismatch fails at the call that introduced it rather than somewhere
downstream. Sizes are bounded by the number of observations per patient
(typically < 20), so nothing here is tuned for large inputs.

The inverse is computed by Gauss-Jordan elimination with partial pivoting
rather than numpy.linalg.inv so that near-singular marginal covariances
(duplicate sampling days with zero residual variance) are reported with the
same pivot threshold as the reference implementation.
"""

import numpy as np

from .errors import SingularMatrix


# Pivot magnitude below which a matrix is treated as singular
PIVOT_TOLERANCE = 1e-12


def as_matrix(A) -> np.ndarray:
    """Coerce input to a non-empty 2-D float array."""
    M = np.asarray(A, dtype=float)
    if M.ndim != 2 or M.shape[0] == 0 or M.shape[1] == 0:
        raise ValueError(f"Expected a non-empty 2-D matrix, got shape {M.shape}")
    return M


def identity(n: int) -> np.ndarray:
    """n × n identity matrix."""
    if n < 1:
        raise ValueError(f"Identity size must be positive, got {n}")
    return np.eye(n)


def transpose(A) -> np.ndarray:
    return as_matrix(A).T.copy()


def add(A, B) -> np.ndarray:
    """Element-wise sum of two matrices of identical shape."""
    A, B = as_matrix(A), as_matrix(B)
    if A.shape != B.shape:
        raise ValueError(f"Cannot add matrices of shape {A.shape} and {B.shape}")
    return A + B


def scalar_multiply(scalar: float, A) -> np.ndarray:
    return float(scalar) * as_matrix(A)


def multiply(A, B) -> np.ndarray:
    """Matrix product A (m×n) × B (n×p) = C (m×p)."""
    A, B = as_matrix(A), as_matrix(B)
    if A.shape[1] != B.shape[0]:
        raise ValueError(
            f"Cannot multiply {A.shape[0]}x{A.shape[1]} by {B.shape[0]}x{B.shape[1]}"
        )
    return A @ B


def inverse(A, tolerance: float = PIVOT_TOLERANCE) -> np.ndarray:
    """
    Invert a square matrix by Gauss-Jordan elimination with partial pivoting.

    Args:
        A: Square matrix
        tolerance: Minimum acceptable pivot magnitude

    Returns:
        The inverse of A

    Raises:
        SingularMatrix: If the best available pivot in any column is smaller
            than `tolerance`
    """
    A = as_matrix(A)
    n, m = A.shape
    if n != m:
        raise ValueError(f"Cannot invert non-square matrix of shape {A.shape}")

    # Augmented matrix [A | I]
    aug = np.hstack([A, np.eye(n)])

    for col in range(n):
        # Row with the largest magnitude in this column (first one on ties)
        pivot_row = col + int(np.argmax(np.abs(aug[col:, col])))
        if pivot_row != col:
            aug[[col, pivot_row]] = aug[[pivot_row, col]]

        pivot = aug[col, col]
        if abs(pivot) < tolerance:
            raise SingularMatrix(
                f"Matrix is singular or nearly singular (pivot {pivot:.3e} in column {col})",
                column=col,
                pivot=float(pivot),
            )

        aug[col] = aug[col] / pivot

        for row in range(n):
            if row != col:
                factor = aug[row, col]
                aug[row] = aug[row] - factor * aug[col]

    return aug[:, n:].copy()
