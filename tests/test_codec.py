from __future__ import annotations

import base64
import binascii
import re

import pytest

from conftest import png_bytes
from image_enhancer.codec import ImageCodec, sniff_media_type
from image_enhancer.schemas import EnhancementRequest

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[^;,]+)?;base64,(?P<data>.*)$", re.DOTALL)


def decode_data_uri(uri):
    m = _DATA_URI_RE.match(uri)
    if not m:
        raise ValueError(f"not a base64 data URI: {uri[:40]}...")
    try:
        raw = base64.b64decode(m.group("data"), validate=True)
    except binascii.Error as exc:
        raise ValueError(f"bad base64 payload: {exc}") from exc
    return m.group("mime"), raw


def test_encode_produces_data_uri_with_declared_type():
    raw = png_bytes()
    uri = ImageCodec().encode(EnhancementRequest(raw, "image/png"))
    assert uri.startswith("data:image/png;base64,")
    assert base64.b64decode(uri.split(",", 1)[1]) == raw


def test_encode_sniffs_missing_media_type():
    uri = ImageCodec().encode(EnhancementRequest(png_bytes()))
    assert uri.startswith("data:image/png;base64,")


def test_encode_keeps_every_byte():
    raw = bytes(range(256)) * 3
    media_type, decoded = decode_data_uri(ImageCodec().encode(EnhancementRequest(raw, "image/x-raw")))
    assert media_type == "image/x-raw"
    assert decoded == raw


def test_sniff_unknown_bytes_is_octet_stream():
    assert sniff_media_type(b"definitely not an image") == "application/octet-stream"


def test_decode_rejects_non_data_uri():
    with pytest.raises(ValueError):
        decode_data_uri("https://example.com/a.png")


def test_empty_request_rejected():
    with pytest.raises(ValueError):
        EnhancementRequest(b"")


def test_wrap_creates_live_handle_without_touching_others():
    codec = ImageCodec()
    first = codec.wrap(png_bytes(), "image/png")
    second = codec.wrap(png_bytes(color=(0, 0, 0)), "image/png")

    assert first.live and second.live
    assert first.id != second.id
    assert {h.id for h in codec.live_handles} == {first.id, second.id}


def test_wrap_sniffs_non_image_media_type():
    handle = ImageCodec().wrap(png_bytes(), "application/octet-stream")
    assert handle.media_type == "image/png"


def test_release_is_idempotent():
    codec = ImageCodec()
    handle = codec.wrap(png_bytes(), "image/png")

    codec.release(handle)
    codec.release(handle)
    codec.release(None)

    assert not handle.live
    assert codec.live_handles == []
    with pytest.raises(ValueError):
        handle.data


def test_release_of_foreign_handle_is_noop():
    mine, other = ImageCodec(), ImageCodec()
    handle = other.wrap(png_bytes(), "image/png")
    mine.release(handle)
    assert not handle.live
    other.release(handle)
    assert other.live_handles == []


def test_sniff_oversized_image_is_octet_stream(monkeypatch):
    from PIL import Image

    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10)
    assert sniff_media_type(png_bytes((16, 16))) == "application/octet-stream"


def test_media_type_of_prefers_declared_image_type():
    codec = ImageCodec()
    assert codec.media_type_of(b"not sniffed", "image/webp") == "image/webp"
    assert codec.media_type_of(png_bytes(), None) == "image/png"
