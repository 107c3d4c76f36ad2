"""
Tests for size negotiation and background sizing.

Run with: pytest tests/test_size_negotiator.py -v
"""
import pytest

from domain.models import BgRate, SizeInfo, WatermarkOptions
from services.geometry import round_half_up
from services.size_negotiator import calc_bg_size, negotiate_size, read_oriented_size, scale_for_preview


def _opts(**kwargs) -> WatermarkOptions:
    return WatermarkOptions(**kwargs)


class TestNegotiateSize:
    def test_no_rate_keeps_source_size(self):
        info = negotiate_size(4000, 3000, _opts())
        assert (info.w, info.h, info.reset_w, info.reset_h) == (4000, 3000, 4000, 3000)

    def test_rate_adjusts_height_of_landscape_source(self):
        info = negotiate_size(4000, 3000, _opts(bg_rate_show=True, bg_rate=BgRate(w=3, h=4)))
        assert info.reset_w == 4000
        assert info.reset_h == 5333

    def test_rate_adjusts_width_of_portrait_source(self):
        info = negotiate_size(3000, 4000, _opts(bg_rate_show=True, bg_rate=BgRate(w=1, h=1)))
        assert (info.reset_w, info.reset_h) == (4000, 4000)

    def test_rate_ignored_when_hidden_or_incomplete(self):
        assert negotiate_size(400, 300, _opts(bg_rate=BgRate(w=3, h=4))).reset_h == 300
        assert negotiate_size(400, 300, _opts(bg_rate_show=True, bg_rate=BgRate(w=3, h=0))).reset_h == 300

    def test_landscape_swaps_tall_reset_size(self):
        info = negotiate_size(3000, 4000, _opts(landscape=True))
        assert (info.reset_w, info.reset_h) == (4000, 3000)
        # intrinsic size untouched
        assert (info.w, info.h) == (3000, 4000)

    def test_rounds_half_up(self):
        # 5 / (2/3) = 7.5
        info = negotiate_size(5, 3, _opts(bg_rate_show=True, bg_rate=BgRate(w=2, h=3)))
        assert info.reset_h == 8

    @pytest.mark.parametrize("w,h", [(1, 1), (1, 5000), (5000, 1), (333, 777), (4032, 3024)])
    @pytest.mark.parametrize("rate", [(3, 4), (16, 9), (1, 1), (0, 0)])
    @pytest.mark.parametrize("landscape", [True, False])
    def test_outputs_positive_and_landscape(self, w, h, rate, landscape):
        options = _opts(bg_rate_show=True, bg_rate=BgRate(w=rate[0], h=rate[1]), landscape=landscape)
        info = negotiate_size(w, h, options)
        for v in (info.w, info.h, info.reset_w, info.reset_h):
            assert isinstance(v, int) and v > 0
        if landscape:
            assert info.reset_w >= info.reset_h

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            negotiate_size(0, 10, _opts())


class TestScaleForPreview:
    def test_scales_4000x3000_to_1100(self):
        info, scale = scale_for_preview(SizeInfo(4000, 3000, 4000, 3000), 1100)
        assert scale == pytest.approx(0.275)
        assert (info.w, info.h, info.reset_w, info.reset_h) == (1100, 825, 1100, 825)

    def test_small_source_is_not_upscaled(self):
        original = SizeInfo(800, 600, 800, 600)
        info, scale = scale_for_preview(original, 1100)
        assert scale == 1.0
        assert info == original

    def test_reset_size_drives_scale(self):
        info, scale = scale_for_preview(SizeInfo(4000, 3000, 4000, 5333), 1100)
        assert scale == pytest.approx(1100 / 5333)
        assert info.reset_h == 1100
        assert info.w == round_half_up(4000 * 1100 / 5333)

    @pytest.mark.parametrize("size", [(1, 1), (5000, 2), (2, 5000), (1100, 1100), (12000, 9000)])
    def test_never_increases_any_dimension(self, size):
        original = SizeInfo(size[0], size[1], size[0], size[1])
        info, scale = scale_for_preview(original, 1100)
        assert scale <= 1
        assert info.w <= original.w and info.h <= original.h
        assert info.reset_w <= original.reset_w and info.reset_h <= original.reset_h
        assert min(info.w, info.h, info.reset_w, info.reset_h) >= 1


class TestCalcBgSize:
    def test_width_guard_grows_both_sides(self):
        bg = calc_bg_size(SizeInfo(1000, 800, 1000, 800), _opts())
        # 1000 / 0.9 -> 1112 wide, height keeps the 5:4 rate
        assert (bg.w, bg.h) == (1112, 890)

    def test_explicit_height(self):
        bg = calc_bg_size(SizeInfo(1000, 800, 1000, 800), _opts(), height=1000)
        assert (bg.w, bg.h) == (1250, 1000)

    def test_taller_photo_wins_over_reset_height(self):
        bg = calc_bg_size(SizeInfo(500, 1000, 1000, 800), _opts())
        assert bg.h == 1000
        assert bg.w == 1250

    def test_custom_main_width_rate(self):
        bg = calc_bg_size(SizeInfo(1000, 800, 1000, 800), _opts(main_img_w_rate=50))
        assert bg.w == 2000
        assert bg.h == 1600


def test_read_oriented_size_swaps_rotated(tmp_path, make_photo):
    rotated = make_photo("rotated.jpg", size=(40, 20), orientation=6)
    plain = make_photo("plain.jpg", size=(40, 20))
    assert read_oriented_size(rotated) == (20, 40)
    assert read_oriented_size(plain) == (40, 20)
