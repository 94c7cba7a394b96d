"""Tests for the record-separator frame codec."""

from bingbot.providers.codec import RECORD_SEPARATOR, decode_frames, encode_frame


def test_decode_splits_multiple_frames():
    payload = '{"type":1}\x1e{"type":2}\x1e'

    assert decode_frames(payload) == [{"type": 1}, {"type": 2}]


def test_decode_accepts_bytes():
    assert decode_frames('{"text":"你好"}\x1e'.encode("utf-8")) == [{"text": "你好"}]


def test_decode_skips_empty_segments():
    assert decode_frames("\x1e\x1e{}\x1e") == [{}]
    assert decode_frames("") == []


def test_decode_passes_unparseable_segments_through():
    assert decode_frames('garbage\x1e{"type":3}\x1e') == ["garbage", {"type": 3}]


def test_encode_is_compact_with_single_terminator():
    encoded = encode_frame({"protocol": "json", "version": 1})

    assert encoded == '{"protocol":"json","version":1}\x1e'


def test_encode_escapes_separator_inside_values():
    encoded = encode_frame({"text": f"a{RECORD_SEPARATOR}b"})

    assert encoded.count(RECORD_SEPARATOR) == 1
    assert decode_frames(encoded) == [{"text": f"a{RECORD_SEPARATOR}b"}]
