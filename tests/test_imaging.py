"""Tests for the WebP conversion policy and the Pillow codec."""

import pytest
from PIL import Image

from offload.lib import imaging
from offload.lib.codec import PillowCodec, read_exif
from offload.lib.exceptions import ConversionFailedError
from offload.lib.imaging import (
    ConversionPolicy,
    add_webp_mime_type,
    converted_filename,
    detect_image_content_type,
    enable_webp_support,
    original_filename,
    should_convert,
)


class TestShouldConvert:
    @pytest.mark.parametrize("mime_type", ["image/png", "image/jpeg", "image/jpg"])
    def test_convertible_types(self, mime_type):
        assert should_convert(mime_type)

    @pytest.mark.parametrize("mime_type", ["image/webp", "image/gif", "application/pdf", "", None])
    def test_other_types(self, mime_type):
        assert not should_convert(mime_type)

    def test_disabled_policy_never_converts(self):
        assert not ConversionPolicy(enabled=False).should_convert("image/png")


class TestApply:
    def test_appends_extension(self):
        assert imaging.apply("photo.png", "image/png") == ("photo.png.webp", "image/webp")
        assert imaging.apply("s3://b/uploads/a.jpeg", "image/jpeg") == ("s3://b/uploads/a.jpeg.webp", "image/webp")

    def test_non_convertible_unchanged(self):
        assert imaging.apply("doc.pdf", "application/pdf") == ("doc.pdf", "application/pdf")

    def test_idempotent_on_own_output(self):
        once = imaging.apply("photo.png", "image/png")
        assert imaging.apply(*once) == once

    def test_policy_apply_uses_naming_rule(self):
        assert ConversionPolicy().apply("a-150x150.png", "image/png") == (
            converted_filename("a-150x150.png"),
            "image/webp",
        )


class TestOriginalFilename:
    @pytest.mark.parametrize("name", ["photo.png", "a.b.jpeg", "shot.JPG"])
    def test_inverts_converted_name(self, name):
        assert original_filename(converted_filename(name)) == name

    @pytest.mark.parametrize("name", ["photo.webp", "photo.png", "photo.gif.webp", "photo.png-1.webp"])
    def test_other_names(self, name):
        assert original_filename(name) is None


class TestConvertImage:
    def test_sets_webp_output(self, make_image):
        codec = PillowCodec()
        codec.load(str(make_image()))
        imaging.convert_image(codec, quality=70)
        assert codec.mime_type == "image/webp"
        assert codec.quality == 70

    def test_codec_error_becomes_conversion_failed(self):
        class BrokenCodec(PillowCodec):
            def set_format(self, mime_type, quality):
                raise OSError("no webp encoder")

        with pytest.raises(ConversionFailedError):
            imaging.convert_image(BrokenCodec())

    def test_policy_default_quality(self, make_image):
        codec = PillowCodec()
        codec.load(str(make_image()))
        ConversionPolicy().convert(codec)
        assert codec.quality == 85


class TestPillowCodec:
    def test_load_detects_type(self, make_image):
        codec = PillowCodec()
        codec.load(str(make_image(name="a.jpg", fmt="JPEG")))
        assert codec.mime_type == "image/jpeg"
        assert codec.size == (400, 300)

    def test_resize_width_only(self, make_image):
        codec = PillowCodec()
        codec.load(str(make_image()))
        assert codec.resize(200, None)
        assert codec.size == (200, 150)

    def test_resize_never_upscales(self, make_image):
        codec = PillowCodec()
        codec.load(str(make_image()))
        assert not codec.resize(1024, 1024)
        assert codec.size == (400, 300)

    def test_crop_to_exact_box(self, make_image):
        codec = PillowCodec()
        codec.load(str(make_image()))
        assert codec.resize(150, 150, crop=True)
        assert codec.size == (150, 150)

    def test_copy_is_independent(self, make_image):
        codec = PillowCodec()
        codec.load(str(make_image()))
        clone = codec.copy()
        clone.resize(100, None)
        assert codec.size == (400, 300)

    def test_encode_webp_with_alpha(self, make_image, tmp_path):
        codec = PillowCodec()
        codec.load(str(make_image(name="alpha.png", mode="RGBA")))
        codec.set_format("image/webp", 80)
        target = tmp_path / "out.webp"
        codec.encode(str(target))
        assert detect_image_content_type(target.read_bytes()) == "image/webp"
        with Image.open(target) as img:
            assert img.mode == "RGBA"

    def test_set_format_rejects_unknown_type(self, make_image):
        codec = PillowCodec()
        codec.load(str(make_image()))
        with pytest.raises(ValueError):
            codec.set_format("image/tiff-fax", 80)

    def test_read_exif_dimensions(self, make_image):
        meta = read_exif(str(make_image()))
        assert meta["width"] == 400
        assert meta["height"] == 300


class TestDetectContentType:
    def test_png(self, make_image):
        assert detect_image_content_type(make_image().read_bytes()) == "image/png"

    def test_unknown(self):
        assert detect_image_content_type(b"not an image") is None


class TestWebpSupport:
    def test_filetype_check(self):
        assert enable_webp_support({"ext": False, "type": False}, "photo.png.webp") == {
            "ext": "webp",
            "type": "image/webp",
        }
        assert enable_webp_support({"ext": "png", "type": "image/png"}, "a.png") == {
            "ext": "png",
            "type": "image/png",
        }

    def test_allowed_mimes(self):
        assert add_webp_mime_type({"png": "image/png"}) == {"png": "image/png", "webp": "image/webp"}
