import numpy as np
import pytest

from slamkit.imaging import (
    build_pyramid,
    pixel_value_clamped,
    pixel_value_direct,
    resize_image,
)


def ramp_image(rows=10, cols=12):
    ys, xs = np.mgrid[0:rows, 0:cols]
    return (10.0 * xs + ys).astype(float)


def ramp(x, y):
    return 10.0 * x + y


def test_clamped_integer_coordinates_return_pixel():
    img = ramp_image()
    assert pixel_value_clamped(img, 2, 3) == img[3, 2]


def test_clamped_reproduces_linear_ramp():
    img = ramp_image()
    assert pixel_value_clamped(img, 1.5, 2.25) == pytest.approx(ramp(1.5, 2.25))
    assert pixel_value_clamped(img, 7.75, 4.5) == pytest.approx(ramp(7.75, 4.5))


def test_clamped_negative_coordinates_use_origin():
    img = ramp_image()
    assert pixel_value_clamped(img, -3.0, -7.0) == img[0, 0]


def test_clamped_beyond_border_moves_to_second_last():
    img = ramp_image()
    rows, cols = img.shape
    assert pixel_value_clamped(img, 100.0, 1.0) == pixel_value_clamped(img, cols - 2, 1.0)
    assert pixel_value_clamped(img, 1.0, 100.0) == pixel_value_clamped(img, 1.0, rows - 2)


def test_clamped_accepts_arrays():
    img = ramp_image()
    xs = np.array([1.0, 2.5, 3.25])
    ys = np.array([1.0, 4.0, 5.5])
    values = pixel_value_clamped(img, xs, ys)
    assert values.shape == (3,)
    assert np.allclose(values, ramp(xs, ys))


def test_clamped_rejects_tiny_image():
    with pytest.raises(ValueError):
        pixel_value_clamped(np.zeros((1, 5)), 0, 0)


def test_clamped_rejects_non_finite():
    with pytest.raises(ValueError):
        pixel_value_clamped(ramp_image(), float("nan"), 1.0)


def test_direct_matches_ramp_in_interior():
    img = ramp_image()
    assert pixel_value_direct(img, 3.5, 2.5) == pytest.approx(ramp(3.5, 2.5))
    assert pixel_value_direct(img, 3.5, 2.5) == pytest.approx(
        pixel_value_clamped(img, 3.5, 2.5)
    )


def test_direct_clamps_negative_coordinates():
    img = ramp_image()
    assert pixel_value_direct(img, -5.0, -5.0) == img[0, 0]


def test_direct_at_last_pixel_returns_it():
    img = ramp_image()
    rows, cols = img.shape
    assert pixel_value_direct(img, cols + 3.0, rows + 3.0) == img[rows - 1, cols - 1]


def test_direct_works_on_uint8():
    img = np.full((5, 5), 77, dtype=np.uint8)
    assert pixel_value_direct(img, 2.3, 1.7) == pytest.approx(77.0)


def test_resize_shape_and_constant():
    img = np.full((20, 30), 42, dtype=np.uint8)
    out = resize_image(img, 11, 7)
    assert out.shape == (7, 11)
    assert out.dtype == np.uint8
    assert np.all(out == 42)


def test_resize_half_samples_pixel_centres():
    img = ramp_image(16, 20)
    out = resize_image(img, 10, 8)
    ys, xs = np.mgrid[0:8, 0:10]
    assert np.allclose(out, ramp(2 * xs + 0.5, 2 * ys + 0.5))


def test_resize_identity_size_keeps_image():
    img = ramp_image()
    out = resize_image(img, img.shape[1], img.shape[0])
    assert np.allclose(out, img)


def test_resize_rejects_zero_size():
    with pytest.raises(ValueError):
        resize_image(ramp_image(), 0, 4)


def test_pyramid_shapes():
    img = np.zeros((64, 48), dtype=np.uint8)
    pyramid = build_pyramid(img, 4, 0.5)
    assert [level.shape for level in pyramid] == [(64, 48), (32, 24), (16, 12), (8, 6)]
    assert np.array_equal(pyramid[0], img)


def test_pyramid_truncates_odd_sizes():
    pyramid = build_pyramid(np.zeros((33, 33)), 2, 0.5)
    assert pyramid[1].shape == (16, 16)


def test_pyramid_rejects_bad_levels():
    with pytest.raises(ValueError):
        build_pyramid(np.zeros((8, 8)), 0)