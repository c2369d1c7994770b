"""
Scan target URL normalization and validation.
"""

import ipaddress
import re
from urllib.parse import urlsplit, urlunsplit

MAX_URL_LENGTH = 2048
BLOCKED_SCHEMES = ('javascript:', 'data:', 'file:', 'ftp:', 'mailto:', 'tel:')
HOSTNAME_PATTERN = re.compile(r'^[a-z0-9.-]+$')


def _is_private_host(hostname: str) -> bool:
    if hostname == 'localhost':
        return True
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return address.is_private or address.is_loopback or address.is_link_local or address.is_unspecified


def normalize_url(raw: str) -> str:
    """
    Normalize a user supplied scan target.

    Bare hosts get an http:// prefix; only http and https public hosts are
    accepted. The fragment and default ports are dropped and an empty path
    becomes '/'.

    Raises:
        ValueError: if the input is not an acceptable scan target
    """
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError("Invalid URL input: must be a non-empty string")

    candidate = raw.strip()
    if len(candidate) > MAX_URL_LENGTH:
        raise ValueError("Invalid URL input: too long")

    lowered = candidate.lower()
    if any(scheme in lowered for scheme in BLOCKED_SCHEMES):
        raise ValueError("Invalid URL: dangerous protocol detected")

    if '://' not in candidate:
        if candidate.startswith('//'):
            raise ValueError("Invalid URL format")
        candidate = f"http://{candidate}"

    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError as e:
        raise ValueError(f"Invalid URL format: {e}") from e

    scheme = parts.scheme.lower()
    if scheme not in ('http', 'https'):
        raise ValueError("Invalid protocol: only http and https are allowed")

    hostname = (parts.hostname or '').lower()
    if not hostname:
        raise ValueError("Invalid hostname: empty hostname not allowed")
    if '..' in hostname or not HOSTNAME_PATTERN.match(hostname):
        raise ValueError("Invalid hostname format")
    if _is_private_host(hostname):
        raise ValueError("Invalid hostname: private networks not allowed")

    netloc = hostname
    if port and not ((scheme == 'http' and port == 80) or (scheme == 'https' and port == 443)):
        netloc = f"{hostname}:{port}"

    return urlunsplit((scheme, netloc, parts.path or '/', parts.query, ''))
