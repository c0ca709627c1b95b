from __future__ import annotations

import re
import urllib.parse

""" Hostname helpers: URL parsing and root (registrable) domain derivation. """

# Whitespace, controls and the WHATWG forbidden host code points.
_FORBIDDEN_HOST_CHARS = re.compile(r"[\x00-\x20\x7f<>^|%\\\"#/?@\[\]]")


class InvalidURL(ValueError):
    """
    Brief: Raised when a string cannot be parsed as an absolute URL with a host.

    Inputs:
    - message: Description of the error

    Outputs:
    - Exception instance
    """

    pass


def normalize_hostname(name: str) -> str:
    """
    Brief: Lowercase a DNS name and strip surrounding whitespace and the root dot.

    Inputs:
    - name: hostname or zone name, possibly fully qualified

    Outputs:
    - str: normalized hostname

    Example:
        >>> normalize_hostname(" NS1.Example.COM. ")
        'ns1.example.com'
    """
    return str(name).strip().rstrip(".").lower()


def extract_hostname(url: str) -> str:
    """
    Brief: Extract the lowercase hostname from an absolute URL.

    Inputs:
    - url: URL string such as https://cdn.example.com/app.js

    Outputs:
    - str: hostname without port or credentials

    Raises:
    - InvalidURL when the string has no scheme, no host, or an invalid port.

    Example:
        >>> extract_hostname("https://User@CDN.Example.com:8443/a?b=1")
        'cdn.example.com'
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidURL(f"Not a URL: {url!r}")
    try:
        parts = urllib.parse.urlsplit(url.strip())
        # Accessing .port validates it and raises ValueError when malformed.
        parts.port
    except ValueError as e:
        raise InvalidURL(f"Malformed URL {url!r}: {e}") from e

    if not parts.scheme or not parts.netloc:
        raise InvalidURL(f"Not an absolute URL: {url!r}")
    hostname = parts.hostname
    if not hostname:
        raise InvalidURL(f"URL has no hostname: {url!r}")
    if _FORBIDDEN_HOST_CHARS.search(hostname):
        raise InvalidURL(f"Invalid character in host of {url!r}")
    return normalize_hostname(hostname)


def root_domain(hostname: str) -> str:
    """
    Brief: Derive the root domain as the last two dot-separated labels.

    Inputs:
    - hostname: normalized hostname

    Outputs:
    - str: the hostname itself when it has two or fewer labels, else the last
      two labels joined by a dot.

    Notes:
    - Multi-label public suffixes such as co.uk are not recognized.

    Example:
        >>> root_domain("a.b.example.com")
        'example.com'
        >>> root_domain("localhost")
        'localhost'
    """
    labels = hostname.split(".")
    if len(labels) <= 2:
        return hostname
    return ".".join(labels[-2:])


def is_same_or_subzone(name: str, zone: str) -> bool:
    """
    Brief: Return True when name equals zone or lies underneath it.

    Inputs:
    - name: candidate zone or hostname
    - zone: parent zone

    Outputs:
    - bool

    Example:
        >>> is_same_or_subzone("cdn.example.com", "example.com")
        True
        >>> is_same_or_subzone("badexample.com", "example.com")
        False
    """
    return name == zone or name.endswith("." + zone)
