import pytest

from sigrelay.codec import decode, encode, frame_size
from sigrelay.envelope import make_error, make_message, validate_message


def test_codec_round_trip() -> None:
    msg = make_message("signal", **{"from": "abc", "signal": {"sdp": "v=0\r\n"}})
    decoded = decode(encode(msg))
    assert decoded == msg
    validate_message(decoded)


def test_encode_is_compact() -> None:
    assert encode({"type": "pong", "now": 1}) == '{"type":"pong","now":1}'


def test_encode_escapes_non_ascii_and_lone_surrogates() -> None:
    text = encode({"n": "é", "s": "\ud800"})
    assert text == '{"n":"\\u00e9","s":"\\ud800"}'
    # Always valid UTF-8 on the wire.
    text.encode("utf-8")
    assert decode(text) == {"n": "é", "s": "\ud800"}


def test_frame_size_counts_bytes() -> None:
    assert frame_size("é") == 2
    assert frame_size(b"abc") == 3
    assert frame_size(bytearray(b"\xc3\xa9")) == 2


def test_decode_accepts_utf8_bytes() -> None:
    assert decode('{"type":"ping","n":"é"}'.encode("utf-8")) == {
        "type": "ping",
        "n": "é",
    }


def test_decode_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        decode("{not json")
    with pytest.raises(ValueError):
        decode(b"\xff\xfe")


def test_validate_rejects_non_objects() -> None:
    for value in ([1, 2], "join", 3, None):
        with pytest.raises(TypeError):
            validate_message(value)


def test_make_error_carries_extra_fields() -> None:
    assert make_error("room-full", max=8) == {
        "type": "error",
        "reason": "room-full",
        "max": 8,
    }
