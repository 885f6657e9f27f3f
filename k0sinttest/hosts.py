"""Extracting the host part of an API server address."""

from __future__ import annotations

from urllib.parse import urlsplit

__all__ = ["get_host"]


def get_host(value: str) -> str:
    """The ``host[:port]`` part of ``value``.

    A full URL yields its network location without user information. Anything
    that does not parse as a URL with a host, such as a plain ``host:port``,
    is returned unchanged.
    """
    try:
        netloc = urlsplit(value).netloc
    except ValueError:
        return value
    host = netloc.rpartition("@")[2]
    return host or value