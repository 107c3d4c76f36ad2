"""
Tests for the EXIF bag and the local text renderer's use of it.

Run with: pytest tests/test_exif_reader.py -v
"""
from fractions import Fraction

from PIL.TiffImagePlugin import IFDRational

from services.exif_reader import camera_summary, read_exif_bag, register_heif_opener, to_bag_value
from services.local_renderer import exposure_summary, format_exif_value, resolve_template, text_lines


class TestReadExifBag:
    def test_reads_camera_tags(self, make_photo):
        bag = read_exif_bag(make_photo(make="Acme", model="X100"))
        assert bag["Make"] == "Acme"
        assert bag["Model"] == "X100"
        assert (bag["ImageWidth"], bag["ImageHeight"]) == (600, 400)

    def test_unreadable_file_gives_empty_bag(self, tmp_path):
        broken = tmp_path / "broken.jpg"
        broken.write_bytes(b"nope")
        assert read_exif_bag(broken) == {}
        assert read_exif_bag(tmp_path / "missing.jpg") == {}


class TestBagValue:
    def test_rational(self):
        assert to_bag_value(IFDRational(1, 250)) == 0.004
        assert to_bag_value(Fraction(28, 10)) == 2.8

    def test_zero_denominator(self):
        assert to_bag_value(IFDRational(1, 0)) is None

    def test_bytes_and_nesting(self):
        assert to_bag_value(b"ABC\x00\x00") == "ABC"
        assert to_bag_value((1, b"x")) == [1, "x"]
        assert to_bag_value({1: 2}) == {"1": 2}

    def test_user_comment_and_blobs(self):
        assert to_bag_value(b"ASCII\x00\x00\x00Hello") == "Hello"
        assert to_bag_value(bytes(range(256)) * 2) is None

    def test_rationals_are_rounded(self):
        assert to_bag_value(IFDRational(1, 3)) == 0.333333


def test_camera_summary_dedupes_make():
    assert camera_summary({"Make": "Canon", "Model": "Canon EOS R5"}) == "Canon EOS R5"
    assert camera_summary({"Make": "FUJIFILM", "Model": "X100V"}) == "FUJIFILM X100V"
    assert camera_summary({"Model": "X100V"}) == "X100V"
    assert camera_summary({}) is None


def test_format_exif_value_units():
    assert format_exif_value("FNumber", 2.8) == "f/2.8"
    assert format_exif_value("ExposureTime", 0.004) == "1/250s"
    assert format_exif_value("ExposureTime", 2) == "2s"
    assert format_exif_value("FocalLength", 35.0) == "35mm"
    assert format_exif_value("ISOSpeedRatings", [400]) == "ISO400"
    assert format_exif_value("Model", " X100V ") == "X100V"
    assert format_exif_value("FNumber", None) == ""


def test_exposure_summary_skips_missing():
    assert exposure_summary({"FocalLength": 23, "FNumber": 2}) == "23mm  f/2"


def test_resolve_template():
    exif = {"Model": "X100V", "FNumber": 2}
    assert resolve_template("Shot on {Model} at {FNumber}", exif) == "Shot on X100V at f/2"
    assert resolve_template({"text": "{Unknown} only"}, exif) == "only"


def test_text_lines_fallbacks():
    exif = {"Make": "Acme", "Model": "X100", "FNumber": 4}
    assert text_lines({"exif": exif}) == ["Acme X100", "f/4"]
    assert text_lines({"exif": exif, "fields": ["Model", "FNumber"]}) == ["X100  f/4"]
    assert text_lines({"exif": {}}) == []


def test_register_heif_opener_is_safe():
    assert register_heif_opener() in (True, False)
