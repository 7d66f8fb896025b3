"""Sub-pixel sampling, resizing and image pyramids for grey-scale arrays."""

from __future__ import annotations

import numpy as np


def _grey(image, min_size: int = 1) -> np.ndarray:
    img = np.asarray(image)
    if img.ndim != 2:
        raise ValueError(f"image must be two-dimensional, got shape {img.shape}")
    rows, cols = img.shape
    if rows < min_size or cols < min_size:
        raise ValueError(f"image must be at least {min_size}x{min_size}, got {img.shape}")
    return img


def _coordinates(x, y) -> tuple[np.ndarray, np.ndarray]:
    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    if not (np.all(np.isfinite(xs)) and np.all(np.isfinite(ys))):
        raise ValueError("pixel coordinates must be finite")
    return xs, ys


def _result(values):
    return float(values) if np.ndim(values) == 0 else values


def pixel_value_clamped(image, x, y):
    """Bilinear sample that keeps the 2x2 neighbourhood inside the image.

    Coordinates below zero are moved to zero and coordinates at or beyond
    the last column or row are moved to the one before it. Accepts scalars
    or arrays of coordinates.
    """
    img = _grey(image, 2)
    rows, cols = img.shape
    xs, ys = _coordinates(x, y)
    xs = np.where(xs < 0, 0.0, xs)
    ys = np.where(ys < 0, 0.0, ys)
    xs = np.where(xs >= cols - 1, cols - 2.0, xs)
    ys = np.where(ys >= rows - 1, rows - 2.0, ys)

    xx = xs - np.floor(xs)
    yy = ys - np.floor(ys)
    x0 = xs.astype(np.int64)
    y0 = ys.astype(np.int64)
    x1 = np.minimum(cols - 1, x0 + 1)
    y1 = np.minimum(rows - 1, y0 + 1)

    value = (
        (1 - xx) * (1 - yy) * img[y0, x0].astype(float)
        + xx * (1 - yy) * img[y0, x1].astype(float)
        + (1 - xx) * yy * img[y1, x0].astype(float)
        + xx * yy * img[y1, x1].astype(float)
    )
    return _result(value)


def pixel_value_direct(image, x, y):
    """Bilinear sample reading the right and lower neighbours in row-major order.

    Coordinates are clamped to the image; the neighbours are taken from the
    flattened image, so at the last column they come from the next row.
    Reads past the end of the image repeat its last pixel.
    """
    img = _grey(image)
    rows, cols = img.shape
    xs, ys = _coordinates(x, y)
    xs = np.where(xs < 0, 0.0, xs)
    ys = np.where(ys < 0, 0.0, ys)
    xs = np.where(xs >= cols, cols - 1.0, xs)
    ys = np.where(ys >= rows, rows - 1.0, ys)

    xx = xs - np.floor(xs)
    yy = ys - np.floor(ys)
    base = ys.astype(np.int64) * cols + xs.astype(np.int64)
    flat = img.ravel()
    last = flat.size - 1

    def at(offset: int) -> np.ndarray:
        return flat[np.minimum(base + offset, last)].astype(float)

    value = (
        (1 - xx) * (1 - yy) * at(0)
        + xx * (1 - yy) * at(1)
        + (1 - xx) * yy * at(cols)
        + xx * yy * at(cols + 1)
    )
    return _result(value)


def _axis_weights(src_len: int, dst_len: int):
    scale = src_len / dst_len
    positions = (np.arange(dst_len) + 0.5) * scale - 0.5
    positions = np.clip(positions, 0.0, src_len - 1)
    lower = np.floor(positions).astype(np.int64)
    weight = positions - lower
    upper = np.minimum(lower + 1, src_len - 1)
    return lower, upper, weight


def resize_image(image, width: int, height: int) -> np.ndarray:
    """Resize with bilinear interpolation on pixel centres.

    Integer images are rounded and clipped back to their own type.
    """
    img = _grey(image)
    if width < 1 or height < 1:
        raise ValueError(f"target size must be positive, got {width}x{height}")
    rows, cols = img.shape
    x0, x1, ax = _axis_weights(cols, width)
    y0, y1, ay = _axis_weights(rows, height)
    data = img.astype(float)

    top = data[np.ix_(y0, x0)] * (1 - ax) + data[np.ix_(y0, x1)] * ax
    bottom = data[np.ix_(y1, x0)] * (1 - ax) + data[np.ix_(y1, x1)] * ax
    out = top * (1 - ay)[:, None] + bottom * ay[:, None]

    if np.issubdtype(img.dtype, np.integer):
        info = np.iinfo(img.dtype)
        return np.clip(np.rint(out), info.min, info.max).astype(img.dtype)
    return out.astype(img.dtype, copy=False)


def build_pyramid(image, levels: int = 4, scale: float = 0.5) -> list[np.ndarray]:
    """Return the image followed by levels - 1 successively rescaled copies."""
    if levels < 1:
        raise ValueError(f"levels must be at least 1, got {levels}")
    if scale <= 0:
        raise ValueError(f"scale must be positive, got {scale}")
    pyramid = [_grey(image)]
    for _ in range(levels - 1):
        rows, cols = pyramid[-1].shape
        pyramid.append(resize_image(pyramid[-1], int(cols * scale), int(rows * scale)))
    return pyramid