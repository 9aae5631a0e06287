"""
Shared utilities for chainscope.
Provides secure SSL context handling and URL safety checks used by both the
prober and the wallet selector.
"""

import os
import re
import ssl
import socket
import ipaddress
import urllib.parse
from typing import Tuple, Optional, Union

RPC_SCHEMES = ("http", "https", "ws", "wss")
PROBE_SCHEMES = ("http", "https")

# Unresolved template or credential markers left in registry URLs.
PLACEHOLDER_PATTERNS = [
    re.compile(r"\$\{[^}]*\}"),
    re.compile(r"[{}<>]"),
    re.compile(r"YOUR[_-]", re.IGNORECASE),
    re.compile(r"API[_-]?KEY", re.IGNORECASE),
    re.compile(r"infura-key", re.IGNORECASE),
    re.compile(r"project-id=", re.IGNORECASE),
]

# Shorthand, integer and hex IPv4 forms (127.1, 2130706433, 0x7f.1) that
# inet_aton and browsers accept but ipaddress does not.
NUMERIC_HOST = re.compile(r"^(0x[0-9a-f]*|[0-9]+)(\.(0x[0-9a-f]*|[0-9]+))*$")


def get_ssl_context() -> Optional[ssl.SSLContext]:
    """
    Get SSL context with secure defaults.
    Only disables verification if INSECURE_SSL env var is explicitly set.

    Returns:
        SSLContext with verification disabled, or None for system defaults
    """
    if os.environ.get("INSECURE_SSL", "").lower() in ("1", "true", "yes"):
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        return ctx
    return None


def is_private_ip(ip_obj: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    """Check if IP address is private/reserved."""
    return (
        ip_obj.is_private
        or ip_obj.is_loopback
        or ip_obj.is_link_local
        or ip_obj.is_reserved
        or ip_obj.is_multicast
        or ip_obj.is_unspecified
    )


def parse_ip_host(host: str) -> Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    """
    Return the address a host name denotes literally, or None for a DNS name.
    Raises ValueError for a numeric host no resolver would accept.
    """
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        pass
    if not NUMERIC_HOST.match(host):
        return None
    try:
        return ipaddress.IPv4Address(socket.inet_aton(host))
    except OSError:
        raise ValueError(f"malformed numeric host: {host}")


def has_placeholder(url: str) -> bool:
    """True if the URL still carries a template variable or API-key marker."""
    return any(p.search(url) for p in PLACEHOLDER_PATTERNS)


def is_safe_url(url: str, schemes: Tuple[str, ...] = PROBE_SCHEMES) -> Tuple[bool, Optional[str]]:
    """
    Validate URL before any request is made to it.
    Blocks private IPs, localhost, internal names and template placeholders.
    Host names are not resolved, so this never touches the network; the
    prober checks resolved addresses separately before it connects.

    Args:
        url: URL to validate
        schemes: accepted URL schemes

    Returns:
        Tuple of (is_safe, error_reason)
    """
    if not isinstance(url, str) or not url.strip():
        return False, "invalid_url:empty"

    try:
        parsed = urllib.parse.urlparse(url.strip())
        host = parsed.hostname
    except ValueError as e:
        return False, f"invalid_url:{e}"

    if parsed.scheme not in schemes:
        return False, "invalid_scheme"

    if not host:
        return False, "missing_host"

    if has_placeholder(url):
        return False, "template_placeholder"

    host_lower = host.strip(".").lower()

    # Block localhost variations
    if (
        host_lower == "localhost"
        or host_lower.endswith(".localhost")
        or host_lower.endswith(".local")
        or host_lower.endswith(".internal")
        or host_lower in ("localhost.localdomain", "ip6-localhost", "ip6-loopback")
    ):
        return False, "localhost_blocked"

    try:
        ip_obj = parse_ip_host(host_lower)
    except ValueError:
        return False, "invalid_ip"

    if ip_obj is None:
        return True, None
    if is_private_ip(ip_obj):
        return False, "private_ip_blocked"
    return True, None


def resolved_addresses_are_public(infos) -> Tuple[bool, Optional[str]]:
    """
    Check getaddrinfo results for a host. Any private or reserved address
    blocks the whole host, so a DNS name pointing at an internal service is
    refused even if it also has a public record.
    """
    if not infos:
        return False, "dns_error"
    for info in infos:
        addr = str(info[4][0]).split("%", 1)[0]
        try:
            ip_obj = ipaddress.ip_address(addr)
        except ValueError:
            continue
        if is_private_ip(ip_obj):
            return False, "private_ip_blocked"
    return True, None


def is_valid_rpc_url(url: str) -> bool:
    """Syntactic check only: parseable http(s)/ws(s) URL with a host."""
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        parsed = urllib.parse.urlparse(url.strip())
        return parsed.scheme in RPC_SCHEMES and bool(parsed.hostname)
    except ValueError:
        return False


def hostname(url: str) -> str:
    try:
        return (urllib.parse.urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def parse_chain_id(value) -> int:
    """Parse decimal or 0x-prefixed chain ids, returning 0 when unusable."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    try:
        s = str(value).strip().replace(",", "")
        if s.lower().startswith("0x"):
            return int(s, 16)
        return int(s)
    except (ValueError, AttributeError, TypeError):
        return 0
