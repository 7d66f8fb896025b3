import numpy as np
import pytest

from slamkit.orb import Match, bf_match, compute_orb, hamming_distance


def _random_image(rows=80, cols=90, seed=3):
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(rows, cols), dtype=np.uint8)


def _with_bits(count):
    """Descriptor of eight words whose lowest `count` bits are set."""
    words = []
    remaining = count
    for _ in range(8):
        take = min(32, remaining)
        words.append((1 << take) - 1)
        remaining -= take
    return tuple(words)


def test_hamming_distance_identical_is_zero():
    desc = (1, 2, 3, 4, 5, 6, 7, 0xFFFFFFFF)
    assert hamming_distance(desc, desc) == 0


def test_hamming_distance_all_bits_differ():
    zeros = (0,) * 8
    ones = (0xFFFFFFFF,) * 8
    assert hamming_distance(zeros, ones) == 256


def test_hamming_distance_is_symmetric():
    a = (0x0F0F0F0F, 3, 0, 0, 0, 0, 0, 1)
    b = (0xF0F0F0F0, 1, 0, 0, 0, 0, 0, 0)
    assert hamming_distance(a, b) == hamming_distance(b, a)


def test_hamming_distance_length_mismatch():
    with pytest.raises(ValueError):
        hamming_distance((0,) * 8, (0,) * 7)


def test_compute_orb_border_points_are_none():
    image = _random_image()
    keypoints = [(5.0, 40.0), (40.0, 15.9), (74.0, 40.0), (40.0, 64.0)]
    assert compute_orb(image, keypoints) == [None, None, None, None]


def test_compute_orb_descriptor_shape():
    image = _random_image()
    descriptors = compute_orb(image, [(40.0, 40.0), (1.0, 1.0)])
    assert len(descriptors) == 2
    assert descriptors[1] is None
    desc = descriptors[0]
    assert len(desc) == 8
    assert all(0 <= word < 2**32 for word in desc)


def test_compute_orb_uniform_image_gives_zero_descriptor():
    image = np.full((60, 60), 100, dtype=np.uint8)
    assert compute_orb(image, [(30.0, 30.0)]) == [(0,) * 8]


def test_compute_orb_near_boundary_stays_in_image():
    image = _random_image(40, 40)
    (desc,) = compute_orb(image, [(16.0, 16.0)])
    assert len(desc) == 8


def test_compute_orb_is_translation_invariant():
    big = _random_image(140, 140, seed=11)
    crop_a = big[0:100, 0:100]
    crop_b = big[8:108, 8:108]
    (desc_a,) = compute_orb(crop_a, [(48.0, 48.0)])
    (desc_b,) = compute_orb(crop_b, [(40.0, 40.0)])
    assert desc_a == desc_b


def test_compute_orb_rejects_colour_image():
    with pytest.raises(ValueError):
        compute_orb(np.zeros((40, 40, 3), dtype=np.uint8), [(20.0, 20.0)])


def test_bf_match_same_descriptors_match_themselves():
    image = _random_image(seed=5)
    keypoints = [(30.0, 30.0), (50.0, 35.0), (60.0, 50.0)]
    descriptors = compute_orb(image, keypoints)
    matches = bf_match(descriptors, descriptors)
    distinct = len(set(descriptors)) == len(descriptors)
    assert distinct
    assert matches == [Match(i, i, 0) for i in range(3)]


def test_bf_match_skips_missing_descriptors():
    zero = (0,) * 8
    matches = bf_match([None, zero], [None, zero])
    assert matches == [Match(1, 1, 0)]


def test_bf_match_threshold():
    zero = (0,) * 8
    assert bf_match([zero], [_with_bits(40)]) == []
    assert bf_match([zero], [_with_bits(39)]) == [Match(0, 0, 39)]


def test_bf_match_prefers_closest_and_first_on_tie():
    zero = (0,) * 8
    far = _with_bits(20)
    near = _with_bits(5)
    matches = bf_match([zero], [far, near, near])
    assert matches == [Match(0, 1, 5)]


def test_bf_match_empty_train_set():
    assert bf_match([(0,) * 8], []) == []