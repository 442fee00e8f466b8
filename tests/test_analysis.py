import numpy as np
import pytest

from cristae_density.analysis import (
    apply_crop_rect,
    crop_bounds,
    line_length,
    native_threshold,
    polygon_pixel_area,
    positions_to_points,
    sample_line_profile,
    to_single_channel,
)
from cristae_density.errors import GeometryError


class TestCropBounds:
    def test_padding_clipped_at_origin(self) -> None:
        crop, offset, region = crop_bounds((10, 10, 50, 50), 20, (200, 200))
        assert crop == (0, 0, 80, 80)
        assert offset == (10, 10)
        assert region == (10, 10, 50, 50)

    def test_interior_region_gets_full_padding(self) -> None:
        crop, offset, _ = crop_bounds((50, 40, 10, 20), 5, (200, 200))
        assert crop == (45, 35, 20, 30)
        assert offset == (5, 5)

    def test_clipped_at_far_edges(self) -> None:
        crop, offset, region = crop_bounds((110, 60, 40, 40), 20, (120, 160))
        assert crop == (90, 40, 70, 80)
        assert offset == (20, 20)
        assert region == (110, 60, 40, 40)

    def test_region_partly_outside_is_clipped(self) -> None:
        crop, offset, region = crop_bounds((-5, -5, 20, 20), 20, (100, 100))
        assert region == (0, 0, 15, 15)
        assert crop == (0, 0, 35, 35)
        assert offset == (0, 0)

    def test_offsets_never_negative(self) -> None:
        for bbox in [(0, 0, 5, 5), (3, 1, 5, 5), (95, 95, 5, 5)]:
            _, offset, _ = crop_bounds(bbox, 10, (100, 100))
            assert offset[0] >= 0 and offset[1] >= 0

    @pytest.mark.parametrize("bbox", [(10, 10, 0, 5), (10, 10, 5, 0), (10, 10, -3, 5)])
    def test_zero_size_rejected(self, bbox) -> None:
        with pytest.raises(GeometryError):
            crop_bounds(bbox, 20, (100, 100))

    def test_region_outside_image_rejected(self) -> None:
        with pytest.raises(GeometryError):
            crop_bounds((200, 200, 10, 10), 20, (100, 100))

    def test_crop_matches_apply_crop_rect(self) -> None:
        image = np.arange(100 * 120).reshape(100, 120)
        crop, _, _ = crop_bounds((30, 20, 10, 10), 5, image.shape)
        out = apply_crop_rect(image, crop)
        assert out.shape == (20, 20)
        assert out[0, 0] == image[15, 25]


class TestLineProfile:
    def test_horizontal_line_samples_every_pixel(self) -> None:
        image = np.tile(np.arange(10, dtype=float), (5, 1))
        profile = sample_line_profile(image, ((0.0, 2.0), (9.0, 2.0)))
        assert profile.shape == (10,)
        np.testing.assert_allclose(profile, np.arange(10))

    def test_sample_count_from_rounded_length(self) -> None:
        image = np.zeros((10, 10))
        profile = sample_line_profile(image, ((0.0, 0.0), (3.0, 4.0)))
        assert profile.shape == (6,)

    def test_zero_length_line_gives_one_sample(self) -> None:
        image = np.full((4, 4), 7.0)
        profile = sample_line_profile(image, ((1.0, 1.0), (1.0, 1.0)))
        np.testing.assert_allclose(profile, [7.0])

    def test_bilinear_interpolation(self) -> None:
        image = np.tile(np.arange(4, dtype=float), (4, 1))
        profile = sample_line_profile(image, ((0.5, 1.0), (2.5, 1.0)))
        np.testing.assert_allclose(profile, [0.5, 1.5, 2.5])

    def test_rejects_non_2d(self) -> None:
        with pytest.raises(ValueError):
            sample_line_profile(np.zeros((2, 4, 4)), ((0.0, 0.0), (3.0, 0.0)))

    def test_line_length(self) -> None:
        assert line_length(((0.0, 0.0), (3.0, 4.0))) == pytest.approx(5.0)

    def test_positions_to_points(self) -> None:
        points = positions_to_points(((0.0, 0.0), (10.0, 20.0)), [0.0, 0.5, 1.0])
        assert points == [(0.0, 0.0), (5.0, 10.0), (10.0, 20.0)]


class TestNativeThreshold:
    def test_float_map_rescaled(self) -> None:
        assert native_threshold(127.5, np.zeros((2, 2), dtype=np.float32)) == pytest.approx(0.5)

    def test_uint8_map_unchanged(self) -> None:
        assert native_threshold(128, np.zeros((2, 2), dtype=np.uint8)) == 128.0

    def test_fractional_threshold_unchanged_for_float_map(self) -> None:
        assert native_threshold(0.3, np.zeros((2, 2), dtype=np.float64)) == pytest.approx(0.3)

    def test_rescale_disabled(self) -> None:
        assert native_threshold(128, np.zeros((2, 2), dtype=np.float32), rescale=False) == 128.0


class TestSingleChannel:
    def test_2d_passthrough(self) -> None:
        prob = np.zeros((6, 8))
        assert to_single_channel(prob) is prob

    def test_leading_singletons_squeezed(self) -> None:
        prob = np.ones((1, 1, 6, 8))
        assert to_single_channel(prob).shape == (6, 8)

    def test_channels_first(self) -> None:
        prob = np.stack([np.zeros((6, 8)), np.ones((6, 8))])
        out = to_single_channel(prob, channel=1)
        assert out.shape == (6, 8)
        assert out.max() == 1.0

    def test_channels_last(self) -> None:
        prob = np.zeros((6, 8, 2))
        prob[..., 0] = 3.0
        out = to_single_channel(prob, channel=0)
        assert out.shape == (6, 8)
        assert np.all(out == 3.0)

    def test_channel_index_clamped(self) -> None:
        prob = np.stack([np.zeros((6, 8)), np.full((6, 8), 2.0)])
        assert np.all(to_single_channel(prob, channel=9) == 2.0)

    def test_unsupported_rank(self) -> None:
        with pytest.raises(ValueError):
            to_single_channel(np.zeros((2, 2, 6, 8)))


def test_polygon_pixel_area_counts_interior_pixels() -> None:
    square = [(0.5, 0.5), (9.5, 0.5), (9.5, 9.5), (0.5, 9.5)]
    assert polygon_pixel_area(square) == 81


def test_polygon_pixel_area_degenerate() -> None:
    assert polygon_pixel_area([(0, 0), (5, 5)]) == 0
