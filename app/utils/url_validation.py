"""Guard against fetching media from internal addresses."""

from __future__ import annotations

import ipaddress
import socket
from typing import Callable, Iterable
from urllib.parse import urlparse

from app.core.errors import MediaDownloadError

_BLOCKED_HOSTS = frozenset({"localhost", "metadata.google.internal"})

_PRIVATE_NETWORKS = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        "127.0.0.0/8",
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "169.254.0.0/16",
        "0.0.0.0/8",
        "::1/128",
        "fc00::/7",
        "fe80::/10",
    )
)

Resolver = Callable[[str], Iterable[str]]


def resolve_host(host: str) -> list[str]:
    """Return every address ``host`` resolves to."""
    infos = socket.getaddrinfo(host, None)
    return sorted({info[4][0] for info in infos})


class MediaURLValidator:
    """Reject media URLs that are not plain http(s) or that resolve inward."""

    def __init__(self, resolver: Resolver = resolve_host) -> None:
        self._resolver = resolver

    def __call__(self, url: str) -> None:
        self.validate(url)

    def validate(self, url: str) -> None:
        if not url:
            raise MediaDownloadError("Media URL is empty.")

        parsed = urlparse(url)
        if parsed.scheme.lower() not in ("http", "https"):
            raise MediaDownloadError(
                f"Unsupported URL scheme '{parsed.scheme}'; only http and https are allowed."
            )

        host = parsed.hostname
        if not host:
            raise MediaDownloadError("Media URL has no host.")
        if host.lower() in _BLOCKED_HOSTS:
            raise MediaDownloadError(f"Media URL host is not allowed: {host}")

        try:
            addresses = [str(ipaddress.ip_address(host))]
        except ValueError:
            try:
                addresses = list(self._resolver(host))
            except OSError as exc:
                raise MediaDownloadError(
                    f"Cannot resolve media host {host}.", detail=str(exc)
                ) from exc

        if not addresses:
            raise MediaDownloadError(f"Media host {host} resolved to no addresses.")
        for address in addresses:
            ip = ipaddress.ip_address(address.split("%", 1)[0])
            if ip.version == 6 and ip.ipv4_mapped:
                ip = ip.ipv4_mapped
            if any(ip in network for network in _PRIVATE_NETWORKS):
                raise MediaDownloadError("Media URL resolves to a private or internal address.")


__all__ = ["MediaURLValidator", "resolve_host"]
