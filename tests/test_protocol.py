"""Test line protocol encoding/decoding and stream line framing.

Run from the repo root:
    python3 tests/test_protocol.py
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "python"))

from datetime import datetime, timezone

from gtsdb.errors import ProtocolParseError
from gtsdb.framing import LegacyFraming, LineDecoder, Route
from gtsdb.protocol import (
    DataPoint, decode_push_line, decode_query_response, decode_response,
    encode_query, encode_subscribe, encode_unsubscribe, encode_write,
    parse_record, parse_value,
)


def test_encode_lines():
    """Every client->server message has the documented shape."""
    print("test_encode_lines...", end="")

    assert encode_write("sensor1", 1700000000, 25.5) == "sensor1,1700000000,25.5\n"
    assert encode_write("s", 1, 3) == "s,1,3.0\n"
    assert encode_query("sensor1", 100, 200, 0) == "sensor1,100,200,0\n"
    assert encode_query("sensor1", 100, 200, 60) == "sensor1,100,200,60\n"
    assert encode_subscribe("sensor1") == "subscribe,sensor1\n"
    assert encode_unsubscribe("sensor1") == "unsubscribe,sensor1\n"

    print(" OK")


def test_encode_rejects_reserved_key_chars():
    print("test_encode_rejects_reserved_key_chars...", end="")

    for bad in ("", "a,b", "a|b", "a\nb", "a\rb"):
        try:
            encode_write(bad, 1, 1.0)
        except ValueError:
            pass
        else:
            raise AssertionError(f"expected ValueError for key {bad!r}")

    try:
        encode_subscribe("x,y")
    except ValueError:
        pass
    else:
        raise AssertionError("expected ValueError")

    print(" OK")


def test_write_then_decode_roundtrip():
    """A write line parses back to the exact triple."""
    print("test_write_then_decode_roundtrip...", end="")

    for key, ts, value in [("sensor1", 1700000000, 25.5),
                           ("t", 0, 0.1),
                           ("neg", 1234567890, -1e-7),
                           ("big", 2 ** 40, 1.7976931348623157e308)]:
        points = decode_query_response(encode_write(key, ts, value))
        assert points == [DataPoint(key, ts, value)]

    print(" OK")


def test_decode_response_multi_record():
    print("test_decode_response_multi_record...", end="")

    points = decode_query_response("a,1,1.5|a,2,2.5|a,3,3.50\n")
    assert [p.timestamp for p in points] == [1, 2, 3]
    assert [p.value for p in points] == [1.5, 2.5, 3.5]
    assert all(p.key == "a" for p in points)

    print(" OK")


def test_decode_response_skips_malformed():
    """Bad records are dropped and counted, not fatal."""
    print("test_decode_response_skips_malformed...", end="")

    result = decode_response("a,1,1.0|garbage|a,2|a,x,2.0|a,3,nope|a,4,4.0|")
    assert [p.timestamp for p in result.points] == [1, 4]
    assert result.records == 7
    assert result.skipped == 5
    assert result.values == [1.0, 2.0, 4.0]

    print(" OK")


def test_decode_response_blank_is_empty():
    print("test_decode_response_blank_is_empty...", end="")

    for line in ("", "\n", "   \r\n"):
        result = decode_response(line)
        assert result.points == []
        assert result.records == 0
        assert result.skipped == 0
        assert result.values == []

    print(" OK")


def test_parse_record():
    print("test_parse_record...", end="")

    assert parse_record(" k,10,2.25 ") == DataPoint("k", 10, 2.25)
    assert parse_record("k,10") is None
    assert parse_record("k,10,2,3") is None
    assert parse_record("k,1.5,2") is None

    print(" OK")


def test_parse_value_ignores_timestamp():
    print("test_parse_value_ignores_timestamp...", end="")

    assert parse_value("k,10,2.25") == 2.25
    assert parse_value("k,1.5,2") == 2.0
    assert parse_value("k,,3") == 3.0
    assert parse_value("k,10,x") is None
    assert parse_value("k,10") is None
    assert parse_value("k,10,2,3") is None

    print(" OK")


def test_decode_push_line():
    print("test_decode_push_line...", end="")

    p = decode_push_line("sensor1,1700000000,25.50")
    assert p == DataPoint("sensor1", 1700000000, 25.5)
    assert p.to_datetime() == datetime(2023, 11, 14, 22, 13, 20,
                                       tzinfo=timezone.utc)

    for bad in ("sensor1,1700000000", "sensor1,abc,1.0", "a,1,2,3", ""):
        try:
            decode_push_line(bad)
        except ProtocolParseError as e:
            assert e.line == bad
            assert isinstance(e, ValueError)
        else:
            raise AssertionError(f"expected ProtocolParseError for {bad!r}")

    print(" OK")


def test_datapoint_is_immutable():
    print("test_datapoint_is_immutable...", end="")

    p = DataPoint("k", 1, 1.0)
    try:
        p.value = 2.0
    except AttributeError:
        pass
    else:
        raise AssertionError("DataPoint should be frozen")

    print(" OK")


def test_line_decoder_reassembles_chunks():
    """Lines split across chunks and packed into one chunk both come out whole."""
    print("test_line_decoder_reassembles_chunks...", end="")

    dec = LineDecoder()
    assert dec.feed(b"a,1,1.") == []
    assert dec.pending == 6
    assert dec.feed(b"0\nb,2,2.0\r\nc,3") == ["a,1,1.0", "b,2,2.0"]
    assert dec.feed(b",3.0\n\n") == ["c,3,3.0", ""]
    assert dec.pending == 0

    dec.feed(b"partial")
    dec.reset()
    assert dec.feed(b"x\n") == ["x"]

    print(" OK")


def test_line_decoder_overflow():
    """An oversized line is dropped whole and reported as None."""
    print("test_line_decoder_overflow...", end="")

    dec = LineDecoder(max_line_bytes=16)
    assert dec.feed(b"x" * 32) == []
    assert dec.pending == 0
    assert dec.discarding
    # The tail of the dropped line must not surface as a line of its own.
    assert dec.feed(b"tail\nok\n") == [None, "ok"]
    assert not dec.discarding

    # Too long but complete within one chunk.
    assert dec.feed(b"y" * 20 + b"\nz\n") == [None, "z"]

    # Exactly at the limit is kept.
    assert dec.feed(b"w" * 16 + b"\n") == ["w" * 16]

    dec.feed(b"x" * 32)
    dec.reset()
    assert dec.feed(b"fresh\n") == ["fresh"]

    print(" OK")


def test_legacy_framing():
    print("test_legacy_framing...", end="")

    framing = LegacyFraming()
    assert framing.route("a,1,1.0", in_flight=True) is Route.RESPONSE
    assert framing.route("a,1,1.0", in_flight=False) is Route.PUSH
    assert framing.route("", in_flight=True) is Route.RESPONSE

    print(" OK")


if __name__ == "__main__":
    print("gtsdb protocol tests")
    print("====================\n")

    test_encode_lines()
    test_encode_rejects_reserved_key_chars()
    test_write_then_decode_roundtrip()
    test_decode_response_multi_record()
    test_decode_response_skips_malformed()
    test_decode_response_blank_is_empty()
    test_parse_record()
    test_parse_value_ignores_timestamp()
    test_decode_push_line()
    test_datapoint_is_immutable()
    test_line_decoder_reassembles_chunks()
    test_line_decoder_overflow()
    test_legacy_framing()

    print("\nAll tests passed.")
