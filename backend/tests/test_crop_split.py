"""
Tests for crop-and-split.

Run with: pytest tests/test_crop_split.py -v
"""
from pathlib import Path

import pytest
from PIL import Image

from domain.errors import ValidationError
from domain.models import CropMode
from services.crop_split import (
    center_crop_rect,
    choose_crop_rect,
    clamp_extract_rect,
    crop_split,
    resolve_mode_def,
    split_widths,
)


def _sizes(paths):
    out = []
    for p in paths:
        with Image.open(p) as img:
            out.append(img.size)
    return out


class TestResolveModeDef:
    def test_builtin_modes(self):
        two = resolve_mode_def("two_3x4")
        assert (two.crop_w, two.crop_h, two.parts) == (3, 2, 2)
        three = resolve_mode_def(CropMode.THREE_3X5)
        assert (three.crop_w, three.crop_h, three.parts) == (9, 5, 3)

    def test_builtin_modes_ignore_custom_values(self):
        assert resolve_mode_def("two_3x4", crop_w=1, crop_h=1, parts=3).parts == 2

    def test_custom_accepts_valid_values(self):
        custom = resolve_mode_def("custom", crop_w=4, crop_h="3", parts=2.0)
        assert (custom.crop_w, custom.crop_h, custom.parts) == (4, 3, 2)

    @pytest.mark.parametrize("crop_w,crop_h,parts", [
        (0, 3, 2),
        (-4, 3, 2),
        ("abc", 3, 2),
        (None, 3, 2),
        (4, 0, 2),
        (4, -1, 3),
        (4, float("inf"), 3),
        (4, 3, 1),
        (4, 3, 4),
        (4, 3, 2.5),
        (4, 3, None),
    ])
    def test_custom_rejects_invalid_values(self, crop_w, crop_h, parts):
        with pytest.raises(ValidationError):
            resolve_mode_def("custom", crop_w=crop_w, crop_h=crop_h, parts=parts)

    def test_unknown_mode(self):
        with pytest.raises(ValidationError):
            resolve_mode_def("four_by_four")


class TestCenterCropRect:
    def test_square_to_three_by_two(self):
        rect = center_crop_rect(3000, 3000, 1.5)
        assert (rect.left, rect.top, rect.width, rect.height) == (0, 500, 3000, 2000)

    def test_wide_source_trims_width(self):
        rect = center_crop_rect(4000, 1000, 1.8)
        assert (rect.left, rect.top, rect.width, rect.height) == (1100, 0, 1800, 1000)

    def test_degenerate_source(self):
        rect = center_crop_rect(0, 100, 1.5)
        assert (rect.width, rect.height) == (0, 0)

    @pytest.mark.parametrize("w", [3000, 3001, 4032, 5999])
    @pytest.mark.parametrize("h", [3000, 3024, 4999, 6000])
    @pytest.mark.parametrize("ratio", [3 / 2, 9 / 5, 4 / 3, 1 / 2])
    def test_ratio_within_tolerance(self, w, h, ratio):
        rect = center_crop_rect(w, h, ratio)
        assert abs(rect.width / rect.height - ratio) <= 1e-3
        assert rect.left + rect.width <= w
        assert rect.top + rect.height <= h


class TestExplicitRect:
    def test_clamps_to_image(self):
        rect = clamp_extract_rect(100, 80, {"left": -10, "top": 50, "width": 5000, "height": 20.6})
        assert (rect.left, rect.top, rect.width, rect.height) == (0, 50, 100, 21)

    def test_matching_ratio_is_used(self):
        rect = choose_crop_rect(900, 900, 1.5, {"left": 10, "top": 20, "width": 600, "height": 400})
        assert (rect.left, rect.top, rect.width, rect.height) == (10, 20, 600, 400)

    def test_mismatched_ratio_falls_back_to_center(self):
        rect = choose_crop_rect(900, 900, 1.5, {"left": 0, "top": 0, "width": 500, "height": 500})
        assert (rect.left, rect.top, rect.width, rect.height) == (0, 150, 900, 600)


@pytest.mark.parametrize("parts", [2, 3])
@pytest.mark.parametrize("width", [1, 2, 3, 7, 100, 1001, 2999, 4032])
def test_split_widths_sum_to_crop_width(parts, width):
    widths = split_widths(width, parts)
    assert len(widths) == parts
    assert sum(widths) == width
    assert widths[:-1] == [width // parts] * (parts - 1)


class TestCropSplit:
    def test_two_3x4_on_square_source(self, make_photo, tmp_path):
        src = make_photo("square.jpg", size=(3000, 3000))
        paths = crop_split(src, tmp_path / "out", "two_3x4")
        assert [Path(p).name for p in paths] == ["square_part_1_of_2.jpg", "square_part_2_of_2.jpg"]
        assert _sizes(paths) == [(1500, 2000), (1500, 2000)]

    def test_custom_remainder_goes_to_last_slice(self, make_photo, tmp_path):
        src = make_photo("wide.jpg", size=(1000, 500))
        paths = crop_split(src, tmp_path / "out", "custom", crop_w=2, crop_h=1, parts=3)
        assert _sizes(paths) == [(333, 500), (333, 500), (334, 500)]

    def test_explicit_rect(self, make_photo, tmp_path):
        src = make_photo("rect.jpg", size=(900, 900))
        rect = {"left": 0, "top": 0, "width": 600, "height": 400}
        paths = crop_split(src, tmp_path / "out", "two_3x4", crop_rect=rect)
        assert _sizes(paths) == [(300, 400), (300, 400)]

    def test_orientation_is_applied(self, make_photo, tmp_path):
        # stored 500x1000, displayed 1000x500
        src = make_photo("rotated.jpg", size=(500, 1000), orientation=6)
        paths = crop_split(src, tmp_path / "out", "custom", crop_w=2, crop_h=1, parts=2)
        assert _sizes(paths) == [(500, 500), (500, 500)]

    def test_creates_output_dir(self, make_photo, tmp_path):
        src = make_photo(size=(300, 200))
        out_dir = tmp_path / "a" / "b"
        paths = crop_split(src, out_dir, "two_3x4", quality=50)
        assert out_dir.is_dir()
        assert all(Path(p).parent == out_dir for p in paths)

    def test_is_deterministic(self, make_photo, tmp_path):
        src = make_photo(size=(640, 480))
        first = [Path(p).read_bytes() for p in crop_split(src, tmp_path / "one", "three_3x5")]
        second = [Path(p).read_bytes() for p in crop_split(src, tmp_path / "two", "three_3x5")]
        assert first == second

    @pytest.mark.parametrize("kwargs,message", [
        ({"path": None, "output_dir": "out", "mode": "two_3x4"}, "path is required"),
        ({"path": "x.jpg", "output_dir": "", "mode": "two_3x4"}, "outputDir is required"),
        ({"path": "x.jpg", "output_dir": "out", "mode": None}, "mode is required"),
    ])
    def test_required_fields(self, kwargs, message):
        with pytest.raises(ValidationError, match=message):
            crop_split(**kwargs)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValidationError, match="file not exists"):
            crop_split(tmp_path / "missing.jpg", tmp_path / "out", "two_3x4")

    def test_unreadable_file(self, tmp_path):
        src = tmp_path / "broken.jpg"
        src.write_bytes(b"not a jpeg")
        with pytest.raises(ValidationError, match="unable to read image size"):
            crop_split(src, tmp_path / "out", "two_3x4")

    def test_invalid_custom_parts(self, make_photo, tmp_path):
        src = make_photo(size=(300, 200))
        with pytest.raises(ValidationError, match="parts must be 2 or 3"):
            crop_split(src, tmp_path / "out", "custom", crop_w=3, crop_h=2, parts=5)
