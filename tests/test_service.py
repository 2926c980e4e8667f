import socket

import pytest
from fakes import wait_until

from budgetchat.config import ChatRuntimeConfig
from budgetchat.rooms import RoomRegistry
from budgetchat.service import ChatService
from budgetchat.stats import StatsManager


class Client:
    def __init__(self, address) -> None:
        self.sock = socket.create_connection(address, timeout=5.0)
        self.rfile = self.sock.makefile("rb")

    def line(self) -> str:
        return self.rfile.readline().decode("utf-8")

    def send(self, text: str) -> None:
        self.sock.sendall(text.encode("utf-8"))

    def join(self, nick: str) -> str:
        assert self.line() == "Nick?\n"
        self.send(nick + "\n")
        return self.line()

    def close(self) -> None:
        self.rfile.close()
        self.sock.close()


@pytest.fixture
def service():
    svc = ChatService(ChatRuntimeConfig(host="127.0.0.1", port=0, mailbox_capacity=8))
    svc.start()
    yield svc
    svc.stop()


def test_tcp_room_end_to_end(service) -> None:
    alice = Client(service.address)
    bob = Client(service.address)
    try:
        assert alice.join("alice") == "* The room contains: \n"
        assert bob.join("bob") == "* The room contains: alice\n"

        alice.send("hello\n")
        assert bob.line() == "[alice]: hello\n"

        bob.send("hi\n")
        assert alice.line() == "[bob]: hi\n"

        bob.close()
        assert wait_until(lambda: service.registry.roster() == ["alice"])

        intruder = Client(service.address)
        try:
            assert intruder.join("alice") == "* Nick rejected: nick already in use\n"
            assert intruder.line() == ""
        finally:
            intruder.close()

        newcomer = Client(service.address)
        try:
            assert newcomer.join("bob") == "* The room contains: alice\n"
        finally:
            newcomer.close()
    finally:
        alice.close()

    assert wait_until(lambda: service.registry.roster() == [])
    assert wait_until(lambda: service.session_count() == 0)
    assert service.stats.get("joins") == 3
    assert service.stats.get("joins_rejected") == 1


def test_stop_disconnects_clients() -> None:
    svc = ChatService(ChatRuntimeConfig(host="127.0.0.1", port=0))
    svc.start()
    client = Client(svc.address)
    try:
        assert client.join("alice") == "* The room contains: \n"
        assert wait_until(lambda: svc.session_count() == 1)
        svc.stop()
        svc.stop()
        assert client.line() == ""
        assert svc.registry.roster() == []
    finally:
        client.close()


def test_invalid_config_is_rejected_up_front() -> None:
    with pytest.raises(ValueError):
        ChatService(ChatRuntimeConfig(mailbox_capacity=0))


def test_format_stats_mentions_room_state() -> None:
    stats = StatsManager()
    stats.set_start_time()
    reg = RoomRegistry(stats=stats)
    reg.try_join("alice")
    stats.inc("msgs_in", 3)

    text = stats.format_stats(reg)
    assert "users=1" in text
    assert "joins=1" in text
    assert "msgs_in=3" in text
    assert stats.snapshot()["joins"] == 1
