# ---------------------------------------------------------------
# Scribble handling
#   mask extraction and the image-file wrapper around colorize()
# ---------------------------------------------------------------

import logging
import os

import cv2 as cv
import numpy as np
from PIL import Image

from colorize import DEFAULT_GAMMA, DegenerateInputError, colorize


logger = logging.getLogger(__name__)

DEFAULT_EPS = 1        # summed per-channel difference that counts as colour
DEFAULT_EROSIONS = 1   # 3×3 erosions applied to the raw difference mask
JPEG_QUALITY = 95


# ─────────────────────────── scribble mask ─────────────────────────────
def get_scribble_mask(image: np.ndarray, scribbles: np.ndarray,
                      eps: float = DEFAULT_EPS, n_erosions: int = DEFAULT_EROSIONS) -> np.ndarray:
    """
    Return an H×W uint8 mask (255 = scribbled) of the pixels where
    ``scribbles`` differs from ``image`` by more than ``eps``.

    The mask is eroded ``n_erosions`` times so the anti-aliased rim of a
    stroke is not taken as a hard constraint.
    """
    if image.shape != scribbles.shape:
        raise DegenerateInputError(
            f"Scribble image size {scribbles.shape} does not match image size {image.shape}.")
    if image.ndim != 3 or image.shape[2] != 3:
        raise DegenerateInputError(f"Expected 3-channel images, got shape {image.shape}.")
    if eps < 0:
        raise DegenerateInputError(f"eps must be non-negative, got {eps}.")
    if n_erosions < 0:
        raise DegenerateInputError(f"n_erosions must be non-negative, got {n_erosions}.")

    diff = cv.absdiff(image, scribbles)
    b, g, r = cv.split(diff)
    mask = cv.add(cv.add(b, g), r)   # saturating, like the per-channel sum in uint8
    _, mask = cv.threshold(mask, eps, 255, cv.THRESH_BINARY)
    if n_erosions > 0:
        mask = cv.erode(mask, None, iterations=n_erosions)

    logger.debug("Scribble mask: %d constrained pixels", int(np.count_nonzero(mask)))
    return mask


# ──────────────────────────── image I/O ────────────────────────────────
def load_image(path: str) -> np.ndarray:
    """Read an image as H×W×3 BGR uint8; grayscale files get three equal channels."""
    img = cv.imread(path, cv.IMREAD_COLOR)
    if img is None:
        raise FileNotFoundError(path)
    return img


def load_mask(path: str) -> np.ndarray:
    mask = cv.imread(path, cv.IMREAD_GRAYSCALE)
    if mask is None:
        raise FileNotFoundError(path)
    return mask


def save_image(path: str, img: np.ndarray):
    """Save a BGR (or single-channel) uint8 image with Pillow."""
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    if img.ndim == 3:
        img = cv.cvtColor(img, cv.COLOR_BGR2RGB)
    Image.fromarray(img).save(path, quality=JPEG_QUALITY)


# ──────────────────────── I/O wrapper ──────────────────────────────────
def process_scribble_file(image_path: str, scribble_path: str, out_path: str,
                          gamma: float = DEFAULT_GAMMA, eps: float = DEFAULT_EPS,
                          n_erosions: int = DEFAULT_EROSIONS, mask_path=None,
                          save_mask_path=None, progress: bool = True) -> np.ndarray:
    image = load_image(image_path)
    scribbles = load_image(scribble_path)

    if mask_path is not None:
        mask = load_mask(mask_path)
    else:
        mask = get_scribble_mask(image, scribbles, eps, n_erosions)
    if save_mask_path is not None:
        save_image(save_mask_path, mask)

    logger.info("Running color propagation on %s", image_path)
    result = colorize(image, scribbles, mask, gamma, progress)

    save_image(out_path, result)
    logger.info("Saved %s", out_path)
    return result
