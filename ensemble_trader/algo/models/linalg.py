"""正规方程求解（Gauss-Jordan 消元 + 部分主元）。"""

from __future__ import annotations

import numpy as np

from ensemble_trader.shared.errors import SingularMatrixError

PIVOT_TOLERANCE = 1e-10


def gauss_jordan_inverse(matrix: np.ndarray, tol: float = PIVOT_TOLERANCE) -> np.ndarray:
    """求方阵的逆。

    主元容差相对于矩阵最大元素缩放；任一主元低于容差即视为奇异。

    Raises
    ------
    SingularMatrixError
        矩阵不可逆。
    ValueError
        非方阵。
    """
    a = np.array(matrix, dtype=float)
    if a.ndim != 2 or a.shape[0] != a.shape[1]:
        raise ValueError("Matrix must be square")
    n = a.shape[0]
    scale = float(np.max(np.abs(a))) if a.size else 0.0
    threshold = tol * max(scale, 1.0)

    aug = np.hstack([a, np.eye(n)])
    for col in range(n):
        pivot_row = col + int(np.argmax(np.abs(aug[col:, col])))
        pivot = aug[pivot_row, col]
        if abs(pivot) < threshold:
            raise SingularMatrixError(f"Matrix is singular (pivot {pivot:.3e} at column {col})")
        if pivot_row != col:
            aug[[col, pivot_row]] = aug[[pivot_row, col]]
        aug[col] /= aug[col, col]
        for row in range(n):
            if row != col:
                aug[row] -= aug[row, col] * aug[col]
    return aug[:, n:]


def solve_normal_equation(x: np.ndarray, y: np.ndarray, ridge: float = 0.0) -> tuple[float, np.ndarray]:
    """求解 (X^T X + λI)^-1 X^T y，自动加偏置列（偏置项不做正则）。

    Returns
    -------
    tuple[float, np.ndarray]
        (intercept, coefficients)
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if x.ndim != 2 or x.shape[0] != y.shape[0]:
        raise ValueError("X must be 2-D with one row per target")
    xb = np.hstack([np.ones((x.shape[0], 1)), x])
    xtx = xb.T @ xb
    if ridge > 0:
        reg = np.eye(xtx.shape[0]) * ridge
        reg[0, 0] = 0.0
        xtx = xtx + reg
    xty = xb.T @ y
    beta = gauss_jordan_inverse(xtx) @ xty
    return float(beta[0]), beta[1:]
