import numpy as np
import pytest

from fakes import encode, solid
from validation.errors import InvalidImageError
from validation.image_stats import compute_image_stats, laplacian_variance


def test_uniform_grey_image():
    stats = compute_image_stats(encode(solid(50, 40, 128)))

    assert (stats.width, stats.height) == (50, 40)
    assert stats.brightness == pytest.approx(128)
    assert stats.contrast == pytest.approx(0)
    assert stats.blur == 0
    assert stats.background_std_dev == pytest.approx(0)
    assert stats.rgb_balance_delta == pytest.approx(0)
    assert stats.white_pixel_ratio == 0


def test_white_image_is_all_white():
    stats = compute_image_stats(encode(solid(64, 64, 255)))
    assert stats.white_pixel_ratio == 1.0


@pytest.mark.parametrize("size", [1, 2])
def test_tiny_images_have_zero_blur(size):
    stats = compute_image_stats(encode(solid(size, size, 90)))
    assert stats.blur == 0
    assert stats.min_side == size


def test_red_image_has_colour_delta():
    img = np.zeros((30, 30, 3), dtype=np.uint8)
    img[..., 2] = 200
    stats = compute_image_stats(encode(img))
    assert stats.r_mean == pytest.approx(200)
    assert stats.rgb_balance_delta == pytest.approx(200)


def test_edges_raise_blur_score():
    img = solid(60, 60, 255)
    img[20:40, 20:40] = 0
    gray = img[..., 0]
    assert laplacian_variance(gray) > laplacian_variance(np.full((60, 60), 128, dtype=np.uint8))


def test_deterministic():
    data = encode(solid(40, 40, 77))
    assert compute_image_stats(data) == compute_image_stats(data)


@pytest.mark.parametrize("data", [b"", b"definitely not an image"])
def test_undecodable_bytes(data):
    with pytest.raises(InvalidImageError):
        compute_image_stats(data)
