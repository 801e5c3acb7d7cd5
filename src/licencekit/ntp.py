from __future__ import annotations

import logging
import socket
import struct
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)

NTP_SERVER = "pool.ntp.org"
NTP_PORT = 123
NTP_TIMEOUT = 3.0

NTP_PACKET_SIZE = 48
NTP_EPOCH = datetime(1900, 1, 1, tzinfo=timezone.utc)
# Era 1 starts when the 32-bit seconds counter wraps (RFC 4330 section 3).
NTP_ERA1_EPOCH = datetime(2036, 2, 7, 6, 28, 16, tzinfo=timezone.utc)

# LI = 0 (no warning), VN = 3, Mode = 3 (client)
_CLIENT_REQUEST = b"\x1b" + b"\x00" * (NTP_PACKET_SIZE - 1)
_MODE_SERVER = 4
# Offset of the transmit timestamp: when the reply left the server.
_TRANSMIT_OFFSET = 40
_TIMESTAMP = struct.Struct("!II")


class TimeSourceUnavailable(RuntimeError):
    """Exception raised when the network time could not be obtained."""

    pass


def parse_ntp_reply(reply: bytes) -> datetime:
    """
    Extract the server transmit time from an SNTP reply.

    Args:
        reply: Raw reply datagram.

    Returns:
        Aware UTC datetime with millisecond precision.

    Raises:
        TimeSourceUnavailable: If the reply is undersized, not a server reply,
                               or carries no timestamp.
    """
    if len(reply) < NTP_PACKET_SIZE:
        raise TimeSourceUnavailable(f"NTP reply too short ({len(reply)} bytes)")
    if reply[0] & 0x07 != _MODE_SERVER:
        raise TimeSourceUnavailable("NTP reply is not a server reply")

    seconds, fraction = _TIMESTAMP.unpack_from(reply, _TRANSMIT_OFFSET)
    if seconds == 0 and fraction == 0:
        raise TimeSourceUnavailable("NTP reply has no transmit timestamp")

    # With the most significant bit clear the timestamp belongs to era 1.
    epoch = NTP_EPOCH if seconds & 0x80000000 else NTP_ERA1_EPOCH
    milliseconds = seconds * 1000 + (fraction * 1000) // 0x100000000
    return epoch + timedelta(milliseconds=milliseconds)


def network_time(
    server: str = NTP_SERVER,
    *,
    port: int = NTP_PORT,
    timeout: float = NTP_TIMEOUT,
) -> datetime:
    """
    Query the current UTC time from an NTP server.

    A single request is sent over UDP; send and receive are bounded by
    ``timeout`` so a blocked path cannot hang the caller. Nothing is cached.

    Args:
        server: NTP host name.
        port: NTP UDP port.
        timeout: Socket timeout in seconds.

    Returns:
        Aware UTC datetime reported by the server.

    Raises:
        TimeSourceUnavailable: On resolution failure, socket error or timeout,
                               or a malformed reply.
    """
    try:
        infos = socket.getaddrinfo(server, port, socket.AF_INET, socket.SOCK_DGRAM)
    except (socket.gaierror, UnicodeError) as e:
        # malformed host names fail in the IDNA codec before any lookup
        raise TimeSourceUnavailable(f"Cannot resolve NTP server {server!r}") from e
    if not infos:
        raise TimeSourceUnavailable(f"No address for NTP server {server!r}")

    family, socktype, proto, _canon, address = infos[0]
    try:
        with socket.socket(family, socktype, proto) as sock:
            sock.settimeout(timeout)
            sock.connect(address)
            sock.send(_CLIENT_REQUEST)
            reply = sock.recv(NTP_PACKET_SIZE)
    except socket.timeout as e:
        raise TimeSourceUnavailable(f"NTP server {server!r} timed out") from e
    except OSError as e:
        raise TimeSourceUnavailable(f"NTP query to {server!r} failed: {e}") from e

    now = parse_ntp_reply(reply)
    logger.debug("Network time from %s: %s", server, now.isoformat())
    return now
