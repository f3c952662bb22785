"""
Single-shot ICMP echo probe.
"""

import enum
import os
import socket
import struct
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from loguru import logger

from ovalaunch.core.detector import is_privileged
from ovalaunch.core.errors import (
    MalformedResponseError,
    ProbeError,
    ProtocolAnomalyError,
    TransportError,
)

ICMP_ECHO_REPLY = 0
ICMP_ECHO_REQUEST = 8
ECHO_SEQUENCE = 1
RECEIVE_TIMEOUT = 1.0
MAX_PACKET = 1500
IPV4_MIN_HEADER = 20

_HEADER = struct.Struct("!BBH")
_ECHO = struct.Struct("!BBHHH")


class ProbeOutcome(str, enum.Enum):
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"
    PROBE_ERROR = "probe_error"


@dataclass(frozen=True)
class ProbeResult:
    outcome: ProbeOutcome
    error: Optional[ProbeError] = None

    @property
    def reachable(self) -> bool:
        return self.outcome is ProbeOutcome.REACHABLE


@dataclass(frozen=True)
class IcmpMessage:
    type: int
    code: int
    checksum: int
    body: bytes


def checksum(data: bytes) -> int:
    """RFC 1071 internet checksum."""
    if len(data) % 2:
        data += b"\x00"
    total = sum(struct.unpack(f"!{len(data) // 2}H", data))
    total = (total >> 16) + (total & 0xFFFF)
    total += total >> 16
    return ~total & 0xFFFF


def echo_identifier() -> int:
    return os.getpid() & 0xFFFF


def build_echo_request(identifier: int, sequence: int = ECHO_SEQUENCE, payload: bytes = b"") -> bytes:
    header = _ECHO.pack(ICMP_ECHO_REQUEST, 0, 0, identifier, sequence)
    csum = checksum(header + payload)
    return _ECHO.pack(ICMP_ECHO_REQUEST, 0, csum, identifier, sequence) + payload


def parse_icmp_message(data: bytes) -> IcmpMessage:
    """
    Parse an IPv4 ICMP message (without IP header).

    Raises:
        ValueError: The message is too short to be valid
    """
    if len(data) < _HEADER.size:
        raise ValueError(f"message too short ({len(data)} bytes)")
    icmp_type, code, csum = _HEADER.unpack_from(data)
    body = data[_HEADER.size:]
    if icmp_type in (ICMP_ECHO_REPLY, ICMP_ECHO_REQUEST) and len(body) < 4:
        raise ValueError(f"echo body too short ({len(body)} bytes)")
    return IcmpMessage(type=icmp_type, code=code, checksum=csum, body=body)


def strip_ip_header(data: bytes) -> bytes:
    """
    Drop a leading IPv4 header if the datagram carries one.

    Raw sockets always deliver it, and so do unprivileged ICMP datagram
    sockets on macOS and the BSDs. Linux datagram sockets do not. No ICMP
    type starts with a 0x4 nibble, so the header is recognised by its
    version, header length and protocol fields.
    """
    if len(data) < IPV4_MIN_HEADER or data[0] >> 4 != 4:
        return data
    header_len = (data[0] & 0x0F) * 4
    if header_len < IPV4_MIN_HEADER or len(data) < header_len or data[9] != socket.IPPROTO_ICMP:
        return data
    return data[header_len:]


class ReachabilityProbe:
    """Send one echo request and classify the reply."""

    def __init__(
        self,
        timeout: float = RECEIVE_TIMEOUT,
        privileged: Optional[bool] = None,
        socket_factory: Callable[..., socket.socket] = socket.socket,
    ):
        self.timeout = timeout
        self.privileged = is_privileged() if privileged is None else privileged
        self._socket_factory = socket_factory

    def try_address(self, ip: str) -> Tuple[bool, Optional[ProbeError]]:
        """
        Probe ip once.

        Returns:
            (True, None) on an echo reply, (False, None) when nothing came back
            within the timeout, (False, error) for transport or protocol
            problems.
        """
        packet = build_echo_request(echo_identifier())
        sock_type = socket.SOCK_RAW if self.privileged else socket.SOCK_DGRAM

        try:
            sock = self._socket_factory(socket.AF_INET, sock_type, socket.IPPROTO_ICMP)
        except OSError as e:
            logger.error(f"Failed to open ICMP socket: {e}")
            return False, TransportError(ip, e)

        with sock:
            try:
                sock.settimeout(self.timeout)
                sock.sendto(packet, (ip, 0))
            except OSError as e:
                logger.error(f"Failed to send echo request to {ip}: {e}")
                return False, TransportError(ip, e)

            try:
                data, _ = sock.recvfrom(MAX_PACKET)
            except OSError as e:
                # socket.timeout is an OSError; any read failure means no reply.
                logger.debug(f"No echo reply from {ip}: {e}")
                return False, None

        data = strip_ip_header(data)

        try:
            message = parse_icmp_message(data)
        except ValueError as e:
            logger.warning(f"Malformed reply from {ip}: {e}")
            return False, MalformedResponseError(ip, str(e), data)

        if message.type == ICMP_ECHO_REPLY:
            return True, None

        logger.warning(f"Unexpected ICMP type {message.type} from {ip}")
        return False, ProtocolAnomalyError(ip, message.type, message.code)

    def probe(self, ip: str) -> ProbeResult:
        reachable, error = self.try_address(ip)
        if reachable:
            return ProbeResult(ProbeOutcome.REACHABLE)
        if error is not None:
            return ProbeResult(ProbeOutcome.PROBE_ERROR, error)
        return ProbeResult(ProbeOutcome.UNREACHABLE)
