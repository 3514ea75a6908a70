import ipaddress
import re
import sys
from datetime import datetime
from typing import NamedTuple, Optional
from urllib.parse import ParseResult, urlparse, urlunparse

from screenshot_types import CodedError, ErrorCode

ALLOWED_SCHEMES = ("http", "https")
RESTRICTED_LABEL = "gov"

_IPV6_LOOPBACK = ipaddress.IPv6Address("::1")
_IPV6_UNIQUE_LOCAL = ipaddress.IPv6Network("fc00::/7")
_IPV6_LINK_LOCAL = ipaddress.IPv6Network("fe80::/10")

_DECIMAL_RE = re.compile(r"^[0-9]+$")
_OCTAL_RE = re.compile(r"^[0-7]+$")
_HEX_RE = re.compile(r"^[0-9a-f]+$")


class AdmissionResult(NamedTuple):
    url: str
    parsed_url: ParseResult
    ascii_host: str


def _parse_ipv4_number(part: str) -> Optional[int]:
    # Browsers accept 0x-prefixed hex and 0-prefixed octal parts in IPv4 hosts.
    if not part:
        return None
    if part.startswith("0x"):
        digits, pattern, radix = part[2:], _HEX_RE, 16
    elif len(part) > 1 and part.startswith("0"):
        digits, pattern, radix = part[1:], _OCTAL_RE, 8
    else:
        digits, pattern, radix = part, _DECIMAL_RE, 10
    if not digits:
        return 0
    if not pattern.match(digits):
        return None
    return int(digits, radix)


def _canonical_ipv4(host: str) -> Optional[str]:
    """
    Rewrites any IPv4 spelling a browser would accept into a dotted quad.

    Returns None when the host does not end in a numeric label (i.e. it is a
    domain name). Raises ValueError when it does but is not a valid address,
    which browsers reject as an invalid URL.
    """
    parts = host.split(".")
    if len(parts) > 1 and parts[-1] == "":
        parts = parts[:-1]
    last = parts[-1]
    if not (_DECIMAL_RE.match(last) or (last.startswith("0x") and _parse_ipv4_number(last) is not None)):
        return None
    if len(parts) > 4:
        raise ValueError(f"too many IPv4 parts in '{host}'")
    numbers = [_parse_ipv4_number(part) for part in parts]
    if any(n is None for n in numbers):
        raise ValueError(f"malformed IPv4 part in '{host}'")
    if any(n > 255 for n in numbers[:-1]) or numbers[-1] >= 256 ** (5 - len(numbers)):
        raise ValueError(f"IPv4 part out of range in '{host}'")
    address = numbers[-1]
    for index, n in enumerate(numbers[:-1]):
        address += n * 256 ** (3 - index)
    return str(ipaddress.IPv4Address(address))


def _canonical_ip_literal(host: str) -> str:
    try:
        return str(ipaddress.IPv6Address(host))
    except ValueError:
        pass
    try:
        return _canonical_ipv4(host) or host
    except ValueError:
        return host


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def normalize_hostname(host: str) -> str:
    """
    Lowercases a hostname and converts internationalized labels to their
    Punycode form. IP literals are rewritten to their canonical spelling.

    Falls back to the trimmed, lowercased input when ASCII conversion fails.
    Never raises, and normalize_hostname(normalize_hostname(h)) == normalize_hostname(h).
    """
    lower = (host or "").strip().lower()
    try:
        ascii_host = lower.encode("idna").decode("ascii")
    except UnicodeError:
        ascii_host = ""
    return _canonical_ip_literal(ascii_host or lower)


def is_private_or_loopback(host: str) -> bool:
    """
    Literal-only check for loopback and private-network hosts. No DNS lookup is made.

    - localhost
    - IPv4: 127/8, 10/8, 172.16/12, 192.168/16
    - IPv6: ::1, fc00::/7, fe80::/10, ignoring any %zone suffix

    Stricter than a plain literal match in two places: subdomains of localhost
    (app.localhost), which Chromium pins to loopback without DNS, and IPv4-mapped
    IPv6 addresses, which are judged by their embedded IPv4 address. Every other
    DNS name is reported as public.
    """
    h = host.strip().lower().rstrip(".")
    if h == "localhost" or h.endswith(".localhost"):
        return True

    if ":" in h:
        h = h.partition("%")[0]
    try:
        address = ipaddress.ip_address(h)
    except ValueError:
        return False

    if address.version == 6:
        if address.ipv4_mapped is None:
            return address == _IPV6_LOOPBACK or address in _IPV6_UNIQUE_LOCAL or address in _IPV6_LINK_LOCAL
        address = address.ipv4_mapped

    first, second = address.packed[0], address.packed[1]
    if first == 127 or first == 10:
        return True
    if first == 172 and 16 <= second <= 31:
        return True
    return first == 192 and second == 168


def is_restricted_domain(host: str) -> bool:
    """True for *.gov and *.gov.<tld> names. IP literals are never restricted."""
    if not host or _is_ip_literal(host):
        return False

    labels = [label for label in host.split(".") if label]
    if not labels:
        return False
    if labels[-1] == RESTRICTED_LABEL:
        return True
    return len(labels) >= 2 and labels[-2] == RESTRICTED_LABEL


def admit_url(raw_url: str) -> AdmissionResult:
    """
    Parses a caller-supplied URL and decides whether it may be rendered at all.

    Only http/https URLs with a host are accepted. Government domains and
    loopback/private address literals are refused.

    Args:
        raw_url: The URL string exactly as received from the caller.

    Returns:
        AdmissionResult with the re-serialized URL (host in ASCII form), the
        parse result and the normalized ASCII host.

    Raises:
        CodedError: E_INVALID_URL for unparsable URLs, disallowed schemes or
                    authorities a browser would read differently ('\\', '%' in host),
                    E_BLOCKED_DOMAIN for restricted or private hosts.
    """
    if not isinstance(raw_url, str) or not raw_url.strip():
        raise CodedError(ErrorCode.INVALID_URL, "URL is invalid")

    try:
        parsed = urlparse(raw_url.strip())
        port = parsed.port
    except ValueError as e:
        raise CodedError(ErrorCode.INVALID_URL, f"URL is invalid: {e}")

    if not parsed.scheme or not parsed.netloc:
        raise CodedError(ErrorCode.INVALID_URL, "URL is invalid")
    if parsed.scheme not in ALLOWED_SCHEMES:
        raise CodedError(ErrorCode.INVALID_URL, "Only http/https URLs are allowed")
    if not parsed.hostname:
        raise CodedError(ErrorCode.INVALID_URL, "URL has no host")
    # Browsers read '\' as '/' in http(s) authorities and percent-decode hosts,
    # so either one can make the browser connect to a host other than parsed.hostname.
    if "\\" in parsed.netloc:
        raise CodedError(ErrorCode.INVALID_URL, "URL authority must not contain a backslash")
    if "%" in parsed.hostname:
        raise CodedError(ErrorCode.INVALID_URL, f"URL host must not contain '%': {parsed.hostname}")

    ascii_host = normalize_hostname(parsed.hostname)
    if ":" in ascii_host:
        if not _is_ip_literal(ascii_host):
            raise CodedError(ErrorCode.INVALID_URL, f"URL host is not a valid IPv6 address: {ascii_host}")
    else:
        try:
            _canonical_ipv4(ascii_host)
        except ValueError as e:
            raise CodedError(ErrorCode.INVALID_URL, f"URL is invalid: {e}")

    if is_restricted_domain(ascii_host):
        print(f"DEBUG: [%{datetime.now().isoformat()}] Refusing government host '{ascii_host}' from URL '{raw_url}'", file=sys.stderr)
        raise CodedError(ErrorCode.BLOCKED_DOMAIN, f"Access to government sites is not allowed: {ascii_host}")

    if is_private_or_loopback(ascii_host):
        print(f"DEBUG: [%{datetime.now().isoformat()}] Refusing private/loopback host '{ascii_host}' from URL '{raw_url}'", file=sys.stderr)
        raise CodedError(ErrorCode.BLOCKED_DOMAIN, f"Access to local or private network addresses is not allowed: {ascii_host}")

    netloc = f"[{ascii_host}]" if ":" in ascii_host else ascii_host
    if port is not None:
        netloc = f"{netloc}:{port}"
    if "@" in parsed.netloc:
        netloc = f"{parsed.netloc.rpartition('@')[0]}@{netloc}"
    normalized = parsed._replace(netloc=netloc)

    return AdmissionResult(url=urlunparse(normalized), parsed_url=normalized, ascii_host=ascii_host)
