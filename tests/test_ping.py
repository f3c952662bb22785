"""Tests for the ICMP echo probe (with a fake socket)."""
import os
import socket
import struct
import time

import pytest

from ovalaunch.core.errors import MalformedResponseError, ProtocolAnomalyError, TransportError
from ovalaunch.modules.ping import (
    ICMP_ECHO_REPLY,
    ICMP_ECHO_REQUEST,
    ProbeOutcome,
    ReachabilityProbe,
    build_echo_request,
    checksum,
    parse_icmp_message,
    strip_ip_header,
)

TARGET = "192.168.11.11"


class FakeSocket:
    """Stands in for an ICMP socket; replies with a canned datagram or raises."""

    def __init__(self, reply=None, recv_error=None, send_error=None):
        self.reply = reply
        self.recv_error = recv_error
        self.send_error = send_error
        self.sent = []
        self.timeout = None
        self.closed = False
        self.opened_with = None

    def settimeout(self, value):
        self.timeout = value

    def sendto(self, data, address):
        if self.send_error:
            raise self.send_error
        self.sent.append((data, address))
        return len(data)

    def recvfrom(self, size):
        if self.recv_error:
            raise self.recv_error
        return self.reply, (TARGET, 0)

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def _factory(fake):
    def make(family, kind, proto):
        fake.opened_with = (family, kind, proto)
        return fake

    return make


def _echo_reply(identifier=1234, sequence=1):
    return struct.pack("!BBHHH", ICMP_ECHO_REPLY, 0, 0, identifier, sequence)


def _ip_header(payload_len):
    return struct.pack(
        "!BBHHHBBH4s4s",
        0x45, 0, 20 + payload_len, 0, 0, 64, socket.IPPROTO_ICMP, 0,
        socket.inet_aton(TARGET), socket.inet_aton("192.168.11.1"),
    )


def test_echo_reply_is_reachable():
    fake = FakeSocket(reply=_echo_reply())
    probe = ReachabilityProbe(privileged=False, socket_factory=_factory(fake))

    assert probe.try_address(TARGET) == (True, None)
    assert fake.opened_with == (socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_ICMP)
    assert fake.closed is True


def test_request_is_well_formed():
    fake = FakeSocket(reply=_echo_reply())
    ReachabilityProbe(privileged=False, socket_factory=_factory(fake)).try_address(TARGET)

    (packet, address), = fake.sent
    assert address == (TARGET, 0)
    icmp_type, code, _, identifier, sequence = struct.unpack("!BBHHH", packet[:8])
    assert (icmp_type, code) == (ICMP_ECHO_REQUEST, 0)
    assert identifier == os.getpid() & 0xFFFF
    assert sequence == 1
    assert checksum(packet) == 0


def test_timeout_means_no_reply():
    fake = FakeSocket(recv_error=socket.timeout("timed out"))
    probe = ReachabilityProbe(privileged=False, socket_factory=_factory(fake))

    assert probe.try_address(TARGET) == (False, None)
    assert fake.timeout == 1.0
    assert fake.closed is True


def test_malformed_reply():
    fake = FakeSocket(reply=b"\x00\x00")
    reachable, error = ReachabilityProbe(privileged=False, socket_factory=_factory(fake)).try_address(TARGET)

    assert reachable is False
    assert isinstance(error, MalformedResponseError)
    assert error.data == b"\x00\x00"


def test_short_echo_body_is_malformed():
    fake = FakeSocket(reply=struct.pack("!BBH", ICMP_ECHO_REPLY, 0, 0) + b"\x01")
    _, error = ReachabilityProbe(privileged=False, socket_factory=_factory(fake)).try_address(TARGET)
    assert isinstance(error, MalformedResponseError)


def test_destination_unreachable_is_protocol_anomaly():
    fake = FakeSocket(reply=struct.pack("!BBHI", 3, 1, 0, 0))
    reachable, error = ReachabilityProbe(privileged=False, socket_factory=_factory(fake)).try_address(TARGET)

    assert reachable is False
    assert isinstance(error, ProtocolAnomalyError)
    assert (error.icmp_type, error.icmp_code) == (3, 1)
    assert "echo reply" in str(error)


def test_raw_socket_strips_ip_header():
    reply = _echo_reply()
    fake = FakeSocket(reply=_ip_header(len(reply)) + reply)
    probe = ReachabilityProbe(privileged=True, socket_factory=_factory(fake))

    assert probe.try_address(TARGET) == (True, None)
    assert fake.opened_with[1] == socket.SOCK_RAW


def test_datagram_socket_strips_ip_header():
    """macOS and BSD datagram ICMP sockets deliver the IPv4 header too."""
    reply = _echo_reply()
    fake = FakeSocket(reply=_ip_header(len(reply)) + reply)
    probe = ReachabilityProbe(privileged=False, socket_factory=_factory(fake))

    assert probe.try_address(TARGET) == (True, None)
    assert fake.opened_with[1] == socket.SOCK_DGRAM


def test_strip_ip_header_leaves_other_datagrams_alone():
    reply = _echo_reply()
    not_icmp = bytearray(_ip_header(len(reply)))
    not_icmp[9] = socket.IPPROTO_UDP

    assert strip_ip_header(bytes(not_icmp) + reply) == bytes(not_icmp) + reply
    assert strip_ip_header(b"\x45\x00\x00") == b"\x45\x00\x00"
    assert strip_ip_header(_ip_header(len(reply)) + reply) == reply


def test_open_failure_is_transport_error():
    def refuse(*args):
        raise PermissionError(1, "Operation not permitted")

    reachable, error = ReachabilityProbe(privileged=True, socket_factory=refuse).try_address(TARGET)
    assert reachable is False
    assert isinstance(error, TransportError)
    assert isinstance(error.cause, PermissionError)


def test_send_failure_is_transport_error():
    fake = FakeSocket(send_error=OSError(101, "Network is unreachable"))
    _, error = ReachabilityProbe(privileged=False, socket_factory=_factory(fake)).try_address(TARGET)

    assert isinstance(error, TransportError)
    assert fake.closed is True


@pytest.mark.parametrize(
    "fake,outcome",
    [
        (FakeSocket(reply=_echo_reply()), ProbeOutcome.REACHABLE),
        (FakeSocket(recv_error=socket.timeout()), ProbeOutcome.UNREACHABLE),
        (FakeSocket(reply=b"\x08"), ProbeOutcome.PROBE_ERROR),
    ],
)
def test_probe_outcomes(fake, outcome):
    result = ReachabilityProbe(privileged=False, socket_factory=_factory(fake)).probe(TARGET)
    assert result.outcome is outcome
    assert result.reachable is (outcome is ProbeOutcome.REACHABLE)
    assert (result.error is not None) is (outcome is ProbeOutcome.PROBE_ERROR)


def test_checksum_known_value():
    # Echo request, id 1, seq 1: 0x0800 + 0x0001 + 0x0001 = 0x0802 -> 0xf7fd
    assert checksum(struct.pack("!BBHHH", 8, 0, 0, 1, 1)) == 0xF7FD
    assert build_echo_request(1)[2:4] == b"\xf7\xfd"


def test_parse_and_strip_helpers():
    message = parse_icmp_message(_echo_reply(identifier=7))
    assert message.type == ICMP_ECHO_REPLY
    assert message.body[:2] == b"\x00\x07"
    assert strip_ip_header(_echo_reply()) == _echo_reply()
    with pytest.raises(ValueError):
        parse_icmp_message(b"")


def test_no_responder_returns_within_deadline():
    """192.0.2.0/24 is reserved for documentation; nothing there sends an echo reply."""
    start = time.monotonic()
    reachable, error = ReachabilityProbe().try_address("192.0.2.1")
    elapsed = time.monotonic() - start

    if isinstance(error, TransportError):
        pytest.skip(f"ICMP sockets not available here: {error}")
    assert reachable is False
    assert elapsed < 3.0
