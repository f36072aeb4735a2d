"""Redirect target classification.

``validate_redirect_target`` is a pure function of the URL and the
production flag: no DNS, no network, no state. Checks run in a fixed order
and stop at the first rejection.

URLs are parsed with pydantic's ``HttpUrl``, which normalises hosts the way
browsers do (``127.1`` and ``0x7f000001`` both become ``127.0.0.1``) and
rejects hosts that are not valid, so the checks below only ever see the
canonical form.
"""
import enum
import ipaddress
import re
from dataclasses import dataclass

from pydantic import HttpUrl, TypeAdapter, ValidationError

ALLOWED_SCHEMES = {"http", "https"}

BLOCKED_DOMAINS = frozenset({
    "malicious-site.com",
    "phishing-site.com",
})

BLOCKED_TLDS = (".tk", ".ml", ".ga", ".cf")

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "0.0.0.0", "::1"})

IPV4_LITERAL = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")

_http_url = TypeAdapter(HttpUrl)


class RejectReason(str, enum.Enum):
    BAD_SCHEME = "bad_scheme"
    BLOCKED_DOMAIN = "blocked_domain"
    BLOCKED_TLD = "blocked_tld"
    PRIVATE_NETWORK_BLOCKED = "private_network_blocked"


@dataclass(frozen=True)
class Verdict:
    reason: RejectReason | None = None

    @property
    def ok(self) -> bool:
        return self.reason is None

    def __bool__(self) -> bool:
        return self.ok


OK = Verdict()

MESSAGES = {
    RejectReason.BAD_SCHEME: "Please provide a valid URL (http/https)",
    RejectReason.BLOCKED_DOMAIN: "This destination domain is not allowed",
    RejectReason.BLOCKED_TLD: "This destination domain is not allowed",
    RejectReason.PRIVATE_NETWORK_BLOCKED: "Redirects to local or private addresses are not allowed",
}


def _hostname(url: str) -> str | None:
    try:
        parsed = _http_url.validate_python(url.strip())
    except ValidationError:
        return None
    if parsed.scheme not in ALLOWED_SCHEMES or not parsed.host:
        return None
    # FQDN form: "localhost." and "localhost" name the same host
    return parsed.host.strip("[]").rstrip(".") or None


def _is_private_address(host: str) -> bool:
    if host in LOOPBACK_HOSTS or IPV4_LITERAL.match(host):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    if getattr(address, "ipv4_mapped", None) is not None:
        return True
    return address.is_loopback or address.is_unspecified or address.is_private or address.is_link_local


def validate_redirect_target(url: str, production: bool) -> Verdict:
    if not isinstance(url, str):
        return Verdict(RejectReason.BAD_SCHEME)

    host = _hostname(url)
    if host is None:
        return Verdict(RejectReason.BAD_SCHEME)

    if host in BLOCKED_DOMAINS:
        return Verdict(RejectReason.BLOCKED_DOMAIN)

    if host.endswith(BLOCKED_TLDS):
        return Verdict(RejectReason.BLOCKED_TLD)

    # Loopback/IP checks are skipped outside production to allow local testing
    if production and _is_private_address(host):
        return Verdict(RejectReason.PRIVATE_NETWORK_BLOCKED)

    return OK
