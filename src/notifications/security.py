"""
Outbound webhook safety: SSRF guard, header sanitizing and body signing.

The SSRF guard runs on every send, not only when a channel is saved,
because DNS answers can change between validation and use.
"""

import asyncio
import hashlib
import hmac
import ipaddress
import logging
import socket
from collections.abc import Iterable, Mapping
from urllib.parse import urlsplit

from src.notifications.exceptions import ChannelDeliveryError, SSRFRejectedError

logger = logging.getLogger(__name__)

BLOCKED_HOSTNAMES: frozenset[str] = frozenset({"localhost"})
BLOCKED_SUFFIXES: tuple[str, ...] = (".local", ".internal", ".localhost")

# Carrier-grade NAT space is neither private nor global in ipaddress
_SHARED_ADDRESS_SPACE = ipaddress.ip_network("100.64.0.0/10")

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def is_disallowed_ip(ip: IPAddress) -> bool:
    """True for private, loopback, link-local, reserved, multicast or unspecified addresses."""
    if isinstance(ip, ipaddress.IPv6Address):
        mapped = ip.ipv4_mapped or ip.sixtofour
        if mapped is not None and is_disallowed_ip(mapped):
            return True
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
        or (isinstance(ip, ipaddress.IPv4Address) and ip in _SHARED_ADDRESS_SPACE)
    )


def check_hostname(hostname: str) -> None:
    """
    Static checks that need no DNS: blocked names, blocked suffixes and
    literal IP addresses.

    Raises:
        SSRFRejectedError: Hostname is missing, internal or a disallowed literal IP.
    """
    host = (hostname or "").strip().rstrip(".").lower()
    if not host:
        raise SSRFRejectedError("Webhook URL has no hostname")
    if host in BLOCKED_HOSTNAMES or host.endswith(BLOCKED_SUFFIXES):
        raise SSRFRejectedError(f"Webhook URL must not target internal host {host!r}")

    try:
        ip = ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return
    if is_disallowed_ip(ip):
        raise SSRFRejectedError(f"Webhook URL targets disallowed address {ip}")


async def resolve_host(hostname: str, port: int) -> list[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, port, type=socket.SOCK_STREAM)
    return sorted({info[4][0] for info in infos})


async def check_webhook_target(url: str) -> list[str]:
    """
    Resolve the URL's host and reject it if any address is disallowed.

    Returns:
        The resolved addresses.

    Raises:
        SSRFRejectedError: Scheme is not https, host is internal or any
            resolved address is disallowed.
        ChannelDeliveryError: Hostname could not be resolved.
    """
    parts = urlsplit(url)
    if parts.scheme != "https":
        raise SSRFRejectedError("Webhook URL must use HTTPS")
    hostname = parts.hostname or ""
    check_hostname(hostname)
    try:
        port = parts.port or 443
    except ValueError as e:
        raise SSRFRejectedError(f"Webhook URL has an invalid port: {e}") from e

    try:
        addresses = await resolve_host(hostname, port)
    except (OSError, UnicodeError) as e:
        raise ChannelDeliveryError(f"Could not resolve webhook hostname {hostname!r}: {e}") from e
    if not addresses:
        raise ChannelDeliveryError(f"Webhook hostname {hostname!r} resolved to no addresses")

    for address in addresses:
        # Scoped IPv6 results carry a "%iface" suffix
        ip = ipaddress.ip_address(address.split("%", 1)[0])
        if is_disallowed_ip(ip):
            logger.warning("Rejected webhook %s: %s resolves to %s", url, hostname, ip)
            raise SSRFRejectedError(
                f"Webhook host {hostname!r} resolves to disallowed address {ip}"
            )
    return addresses


def sanitize_headers(
    headers: Mapping[str, str] | None,
    protected: Iterable[str],
) -> dict[str, str]:
    """Drop protected headers (case-insensitive) and values with line breaks."""
    blocked = {h.lower() for h in protected}
    clean: dict[str, str] = {}
    for name, value in (headers or {}).items():
        if name.lower() in blocked:
            logger.debug("Dropping protected webhook header %s", name)
            continue
        if any(c in f"{name}{value}" for c in "\r\n"):
            logger.debug("Dropping webhook header %s with line break", name)
            continue
        clean[name] = value
    return clean


def sign_body(secret: str, body: bytes) -> str:
    """``sha256=<hex>`` HMAC of the exact request body."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"
