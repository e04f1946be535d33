"""
Correlation structure between asset-class return shocks.

WHY THIS MATTERS:
Independent shocks let a path crash BTC while stocks, real estate and "other"
all boom in the same year, which understates portfolio-level drawdowns.
Correlated shocks keep risk assets moving together and leave cash and bonds
as the partial hedge they are in practice.

The matrix is fixed data; its Cholesky factor is computed once at import and
exposed read-only. Nothing mutates either at runtime.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
from scipy import linalg

from core.schema import MC_ASSET_ORDER

# Order: [BTC, Stocks, Bonds, Real Estate, Cash, Other]
#
# Rationale:
#   BTC ↔ Stocks:       +0.40  (risk-on / risk-off since 2018)
#   Stocks ↔ Other:     +0.60  (most "other" holdings are equity-like)
#   Stocks ↔ RE:        +0.50  (both priced off growth and rates)
#   Bonds ↔ Stocks:     -0.20  (flight to quality)
#   Bonds ↔ Cash:       +0.30  (both follow short rates)

ASSET_CORRELATION_MATRIX = np.array([
    # BTC   Stocks  Bonds   RE     Cash   Other
    [ 1.00,  0.40, -0.10,  0.20,  0.00,  0.30],  # BTC
    [ 0.40,  1.00, -0.20,  0.50,  0.00,  0.60],  # Stocks
    [-0.10, -0.20,  1.00, -0.10,  0.30, -0.10],  # Bonds
    [ 0.20,  0.50, -0.10,  1.00,  0.00,  0.40],  # Real Estate
    [ 0.00,  0.00,  0.30,  0.00,  1.00,  0.00],  # Cash
    [ 0.30,  0.60, -0.10,  0.40,  0.00,  1.00],  # Other
])
ASSET_CORRELATION_MATRIX.setflags(write=False)


def _ensure_positive_definite(matrix: np.ndarray) -> np.ndarray:
    """
    Force a correlation matrix to be positive semi-definite.

    Hand-edited correlations can produce matrices that aren't valid for
    multivariate sampling. This uses eigenvalue clipping to fix that.
    """
    eigenvalues, eigenvectors = np.linalg.eigh(matrix)
    eigenvalues = np.maximum(eigenvalues, 1e-8)
    fixed = eigenvectors @ np.diag(eigenvalues) @ eigenvectors.T
    # Re-normalize to correlation matrix (diagonal = 1)
    d = np.sqrt(np.diag(fixed))
    fixed = fixed / np.outer(d, d)
    np.fill_diagonal(fixed, 1.0)
    return fixed


def cholesky_factor(matrix: np.ndarray) -> np.ndarray:
    """
    Lower-triangular L with L @ L.T == matrix.

    A matrix that is not positive definite is repaired first; a valid one is
    factored as given.
    """
    try:
        factor = linalg.cholesky(matrix, lower=True)
    except linalg.LinAlgError:
        factor = linalg.cholesky(_ensure_positive_definite(np.asarray(matrix)), lower=True)
    factor.setflags(write=False)
    return factor


ASSET_CHOLESKY = cholesky_factor(ASSET_CORRELATION_MATRIX)


def correlate(independent: np.ndarray, factor: np.ndarray = ASSET_CHOLESKY) -> np.ndarray:
    """Map independent shocks (..., 6) onto correlated shocks of the same shape."""
    return independent @ factor.T


def correlation_matrix_to_dataframe(matrix: np.ndarray = ASSET_CORRELATION_MATRIX) -> pd.DataFrame:
    """Convert correlation matrix to a labeled DataFrame for display."""
    labels = list(MC_ASSET_ORDER)
    return pd.DataFrame(matrix, index=labels, columns=labels)
