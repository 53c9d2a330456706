# ---------------------------------------------------------------
# Colorization using Optimization
#   Levin, Lischinski & Weiss (SIGGRAPH 2004)
#
# Affinity weights, sparse system assembly, BiCGSTAB solve and
# YUV reconstruction.  Images are OpenCV BGR uint8 arrays.
# ---------------------------------------------------------------

import logging

import cv2 as cv
import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla
from tqdm import tqdm


logger = logging.getLogger(__name__)

# Parameters (can be adjusted if needed)
DEFAULT_GAMMA = 2.0   # kernel sharpness, higher gives sharper colour boundaries
VARIANCE_EPS = 0.01   # floor added to the local variance
SOLVER_TOL = 1e-10    # relative residual tolerance for BiCGSTAB


class ColorizationError(Exception):
    """Base class for colorization failures."""


class SolverError(ColorizationError, RuntimeError):
    """The iterative solver did not converge for a chrominance channel."""


class DegenerateInputError(ColorizationError, ValueError):
    """Inputs that would leave the linear system ill-defined."""


# ───────────────────────── neighbours & weights ─────────────────────────
def get_neighbours(i: int, j: int, nrows: int, ncols: int):
    """Flat indices of the 3×3 window around (i, j), centre excluded."""
    neighbours = []
    for dx in (-1, 0, 1):
        for dy in (-1, 0, 1):
            m, n = i + dy, j + dx
            if (dx == 0 and dy == 0) or m < 0 or n < 0 or m >= nrows or n >= ncols:
                continue
            neighbours.append(m * ncols + n)
    return neighbours


def local_variance(vals: np.ndarray, eps: float = VARIANCE_EPS) -> float:
    """Population variance E[X²] - E[X]², plus ``eps``."""
    n = vals.size
    total = vals.sum()
    squared = (vals * vals).sum()
    return float(squared / n - (total * total) / (n * n) + eps)


def get_weights(values: np.ndarray, r: int, neighbours, gamma: float = DEFAULT_GAMMA) -> np.ndarray:
    """
    Normalised affinity of pixel ``r`` to each of its ``neighbours``.

    values     : flattened luminance
    neighbours : flat indices, as returned by ``get_neighbours``

    w(r,s) ∝ exp(-γ (Y_r - Y_s)² / 2σ²), where σ² is the variance of the
    window (neighbours plus the centre). The result sums to 1.
    """
    nbr = values[neighbours]
    σ2 = local_variance(np.append(nbr, values[r]))

    if nbr.size == 0:
        return nbr

    # shifted by the largest exponent so the kernel never underflows to all zeros
    k = -gamma * (values[r] - nbr) ** 2 / (2 * σ2)
    w = np.exp(k - k.max())
    w /= w.sum()
    assert np.all(w >= 0)
    return w


# ─────────────────────── linear system assembly ─────────────────────────
def assemble_system(y, u, v, has_color, nrows: int, ncols: int,
                    gamma: float = DEFAULT_GAMMA, progress: bool = True):
    """
    Build A, bu, bv from flattened planes (row-major, length nrows*ncols).

    Every row has a unit diagonal. Unknown neighbours couple through -w in A,
    known neighbours are moved to the right-hand side. Rows of constrained
    pixels are built the same way; they are not replaced by identity rows.
    """
    n = nrows * ncols
    rows, cols, vals = [], [], []
    bu = np.zeros(n, dtype=np.float64)
    bv = np.zeros(n, dtype=np.float64)

    for i in tqdm(range(nrows), desc="Constructing linear system", disable=not progress):
        for j in range(ncols):
            r = i * ncols + j
            neighbours = get_neighbours(i, j, nrows, ncols)
            weights = get_weights(y, r, neighbours, gamma)

            rows.append(r); cols.append(r); vals.append(1.0)
            for s, w in zip(neighbours, weights):
                if has_color[s]:
                    # Move value to RHS of Ax = b
                    bu[r] += w * u[s]
                    bv[r] += w * v[s]
                else:
                    rows.append(r); cols.append(s); vals.append(-w)

    # duplicate (row, col) pairs are summed by the COO -> CSR conversion
    A = sp.csr_matrix((vals, (rows, cols)), shape=(n, n))
    logger.debug("Assembled %dx%d system with %d non-zeros", n, n, A.nnz)
    return A, bu, bv


def setup_problem(Y: np.ndarray, scribbles: np.ndarray, mask: np.ndarray,
                  gamma: float = DEFAULT_GAMMA, progress: bool = True):
    """
    Y         : H×W luminance of the original image
    scribbles : H×W×3 uint8 BGR scribble image
    mask      : H×W, non-zero where the scribble fixes the colour
    """
    nrows, ncols = Y.shape

    scribble_yuv = cv.cvtColor(scribbles, cv.COLOR_BGR2YUV).astype(np.float64)
    u = scribble_yuv[:, :, 1].ravel()
    v = scribble_yuv[:, :, 2].ravel()

    return assemble_system(
        np.asarray(Y, dtype=np.float64).ravel(), u, v,
        np.asarray(mask).ravel() != 0,
        nrows, ncols, gamma, progress,
    )


# ─────────────────────────── core solver ───────────────────────────────
def jacobi_preconditioner(A):
    """Inverse of diag(A); zero diagonal entries are left at 1."""
    d = A.diagonal()
    inv = np.ones_like(d)
    nz = d != 0
    inv[nz] = 1.0 / d[nz]
    return sp.diags(inv, format="csr")


def solve_system(A, bu: np.ndarray, bv: np.ndarray, tol: float = SOLVER_TOL, maxiter=None):
    """
    Solve A·U = bu and A·V = bv with Jacobi-preconditioned BiCGSTAB.

    Both solves share A and its preconditioner. Raises SolverError if either
    channel fails, so no half-solved result escapes.
    """
    A = sp.csr_matrix(A)
    if maxiter is None:
        maxiter = 2 * A.shape[0]
    M = jacobi_preconditioner(A)

    solutions = []
    for name, b in (("U", bu), ("V", bv)):
        logger.info("Solving for %s channel.", name)
        x, info = spla.bicgstab(A, b, rtol=tol, atol=0.0, maxiter=maxiter, M=M)
        if info != 0 or not np.all(np.isfinite(x)):
            raise SolverError(f"Failed to solve for {name} channel (info={info}).")
        solutions.append(x)

    return solutions[0], solutions[1]


# ─────────────────────────── reconstruction ────────────────────────────
def reconstruct(Y: np.ndarray, U: np.ndarray, V: np.ndarray, nrows: int, ncols: int) -> np.ndarray:
    """Merge Y with the solved chroma and return a uint8 BGR image."""
    yuv = np.dstack([
        np.asarray(Y, dtype=np.float64).reshape(nrows, ncols),
        U.reshape(nrows, ncols),
        V.reshape(nrows, ncols),
    ])
    # same rounding and saturation as an 8-bit cast in OpenCV
    yuv = np.clip(np.rint(yuv), 0, 255).astype(np.uint8)
    return cv.cvtColor(yuv, cv.COLOR_YUV2BGR)


# ────────────────────── high-level colorizer ───────────────────────────
def check_inputs(image: np.ndarray, scribbles: np.ndarray, mask: np.ndarray, gamma: float):
    """Raise DegenerateInputError for inputs colorize() cannot handle."""
    if image.ndim != 3 or image.shape[2] != 3:
        raise DegenerateInputError(f"Expected a 3-channel image, got shape {image.shape}.")
    if image.dtype != np.uint8 or scribbles.dtype != np.uint8:
        raise DegenerateInputError("Image and scribbles must be uint8.")
    if scribbles.shape != image.shape:
        raise DegenerateInputError(
            f"Scribble image size {scribbles.shape} does not match image size {image.shape}.")
    if np.shape(mask)[:2] != image.shape[:2] or np.ndim(mask) > 3:
        raise DegenerateInputError(
            f"Mask size {np.shape(mask)} does not match image size {image.shape[:2]}.")
    if not np.isfinite(gamma) or gamma <= 0:
        raise DegenerateInputError(f"gamma must be positive, got {gamma}.")


def colorize(image: np.ndarray, scribbles: np.ndarray, mask: np.ndarray,
             gamma: float = DEFAULT_GAMMA, progress: bool = True) -> np.ndarray:
    """
    image     : H×W×3 uint8 BGR (grayscale content)
    scribbles : H×W×3 uint8 BGR, equal to ``image`` outside the scribbles
    mask      : H×W, non-zero = constrained pixel (see scribble.get_scribble_mask)
    gamma     : kernel sharpness
    """
    check_inputs(image, scribbles, mask, gamma)
    mask = np.asarray(mask)
    if mask.ndim == 3:
        mask = mask.any(axis=2)
    if not mask.any():
        raise DegenerateInputError("Mask has no constrained pixels.")

    nrows, ncols = image.shape[:2]
    Y = cv.cvtColor(image, cv.COLOR_BGR2YUV)[:, :, 0].astype(np.float64)

    A, bu, bv = setup_problem(Y, scribbles, mask, gamma, progress)
    U, V = solve_system(A, bu, bv)
    logger.info("Finished coloring")

    return reconstruct(Y, U, V, nrows, ncols)
