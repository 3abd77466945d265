"""Tests for serial2ws.framing.LineFramer."""

import logging

import pytest

from serial2ws.framing import MAX_BUFFER, LineFramer


def _reference_lines(data: bytes):
    """Lines a single-chunk delivery of ``data`` must produce."""
    segments = data.replace(b"\r", b"").split(b"\n")[:-1]
    lines = [s.decode("utf-8", errors="replace").strip() for s in segments]
    return [line for line in lines if line]


def _feed_in_chunks(data: bytes, size: int):
    framer = LineFramer()
    lines = []
    for i in range(0, len(data), size):
        lines.extend(framer.feed(data[i:i + size]))
    return lines


class TestLineFramer:
    def test_crlf_line(self):
        framer = LineFramer()
        assert framer.feed(b"14074000\r\n") == ["14074000"]
        assert framer.pending == b""

    def test_bare_lf_line(self):
        assert LineFramer().feed(b"OK\n") == ["OK"]

    def test_partial_line_is_held_until_terminator(self):
        framer = LineFramer()
        assert framer.feed(b"AB") == []
        assert framer.pending == b"AB"
        assert framer.feed(b"CD\n") == ["ABCD"]
        assert framer.pending == b""

    def test_several_lines_in_one_chunk(self):
        framer = LineFramer()
        assert framer.feed(b"one\r\ntwo\nthr") == ["one", "two"]
        assert framer.pending == b"thr"

    def test_whitespace_trimmed_and_empty_lines_dropped(self):
        assert LineFramer().feed(b"  padded \t\r\n\r\n   \n\n") == ["padded"]

    def test_cr_split_from_lf_across_chunks(self):
        framer = LineFramer()
        assert framer.feed(b"VAL=1\r") == []
        assert framer.feed(b"\n") == ["VAL=1"]

    def test_multibyte_utf8_split_across_chunks(self):
        framer = LineFramer()
        data = "température\n".encode("utf-8")
        cut = data.index(b"\xc3") + 1
        assert framer.feed(data[:cut]) == []
        assert framer.feed(data[cut:]) == ["température"]

    def test_invalid_utf8_is_replaced(self):
        assert LineFramer().feed(b"ab\xffcd\n") == ["ab�cd"]

    @pytest.mark.parametrize("size", [1, 2, 3, 5, 7, 64])
    def test_chunk_boundaries_do_not_change_output(self, size):
        data = b"=R\r\n14074000\r\n\r\n  SWR 1.2 \nPWR:100W\r\nTEMP 41\npartial"
        assert _feed_in_chunks(data, size) == _reference_lines(data)


class TestOverflow:
    def test_unterminated_data_past_cap_is_discarded(self, caplog):
        caplog.set_level(logging.WARNING, logger="serial2ws")
        framer = LineFramer()
        assert framer.feed(b"x" * (MAX_BUFFER + 1)) == []
        assert framer.pending == b""
        assert "overflow" in caplog.text

    def test_exactly_at_cap_is_kept(self):
        framer = LineFramer()
        framer.feed(b"x" * MAX_BUFFER)
        assert len(framer.pending) == MAX_BUFFER

    def test_discarded_data_never_becomes_a_line(self):
        framer = LineFramer()
        framer.feed(b"y" * 1000)
        framer.feed(b"y" * 100)
        assert framer.feed(b"tail\n") == ["tail"]

    def test_lines_before_overflowing_tail_still_emitted(self):
        framer = LineFramer()
        assert framer.feed(b"good\n" + b"z" * (MAX_BUFFER + 5)) == ["good"]
        assert framer.pending == b""

    def test_custom_cap(self):
        framer = LineFramer(max_buffer=4)
        framer.feed(b"abcde")
        assert framer.pending == b""

    def test_reset_clears_pending(self):
        framer = LineFramer()
        framer.feed(b"half")
        framer.reset()
        assert framer.feed(b"line\n") == ["line"]
