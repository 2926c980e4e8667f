import socket
import threading

import pytest

from budgetchat.errors import TransportError
from budgetchat.stats import StatsManager
from budgetchat.transport import LineAssembler, SocketTransport


def test_assembler_splits_across_chunks() -> None:
    asm = LineAssembler(64)
    assert asm.feed(b"hel") == []
    assert asm.feed(b"lo\nwor") == [b"hello\n"]
    assert asm.feed(b"ld\r\n\n") == [b"world\r\n", b"\n"]
    assert asm.flush() is None


def test_assembler_cuts_overlong_lines() -> None:
    asm = LineAssembler(4)
    assert asm.feed(b"abcdefgh") == []
    assert asm.feed(b"ijk\nok\n") == [b"abcd\n", b"ok\n"]
    assert asm.feed(b"toolong\n") == [b"tool\n"]


def test_assembler_flushes_partial_line() -> None:
    asm = LineAssembler(4)
    asm.feed(b"ab")
    assert asm.flush() == b"ab"
    asm.feed(b"abcdefg")
    assert asm.flush() == b"abcd"
    assert asm.flush() is None


def test_assembler_rejects_zero_limit() -> None:
    with pytest.raises(ValueError):
        LineAssembler(0)


@pytest.fixture
def pair():
    left, right = socket.socketpair()
    right.settimeout(5.0)
    yield left, right
    for s in (left, right):
        try:
            s.close()
        except OSError:
            pass


def test_socket_transport_reads_lines_and_counts_bytes(pair) -> None:
    left, right = pair
    stats = StatsManager()
    t = SocketTransport(left, max_line_bytes=32, stats=stats)
    right.sendall("alice\nhéllo\r\npartial".encode("utf-8"))
    right.shutdown(socket.SHUT_WR)

    assert t.read_line() == "alice\n"
    assert t.read_line() == "héllo\r\n"
    assert t.read_line() == "partial"
    assert t.read_line() is None

    t.write("[bob]: hi\n")
    assert right.recv(64) == b"[bob]: hi\n"
    assert stats.get("bytes_out") == len(b"[bob]: hi\n")
    assert stats.get("bytes_in") > 0


def test_socket_transport_cuts_overlong_lines(pair) -> None:
    left, right = pair
    t = SocketTransport(left, max_line_bytes=4)
    right.sendall(b"abcdefghij\nok\n")
    assert t.read_line() == "abcd\n"
    assert t.read_line() == "ok\n"


def test_close_unblocks_pending_read(pair) -> None:
    left, _right = pair
    t = SocketTransport(left)
    result: list[object] = []

    reader = threading.Thread(target=lambda: result.append(t.read_line()))
    reader.start()
    reader.join(timeout=0.1)
    assert reader.is_alive()

    t.close()
    t.close()
    reader.join(timeout=2.0)
    assert result == [None]

    with pytest.raises(TransportError):
        t.write("late\n")


def test_read_timeout_is_a_transport_error(pair) -> None:
    left, _right = pair
    t = SocketTransport(left)
    t.set_timeout(0.05)
    with pytest.raises(TransportError):
        t.read_line()
