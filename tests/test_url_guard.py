import pytest

from qrhub.url_guard import RejectReason, validate_redirect_target


@pytest.mark.parametrize("url", [
    "https://shop.example.com",
    "http://example.com/path?q=1#frag",
    "HTTPS://Example.COM",
    "https://sub.domain.co.uk:8443/x",
])
def test_accepts_ordinary_destinations(url):
    assert validate_redirect_target(url, production=True).ok


@pytest.mark.parametrize("url", [
    "ftp://example.com",
    "javascript:alert(1)",
    "data:text/html,<script>alert(1)</script>",
    "example.com",
    "//example.com",
    "http://",
    "http://example.com:notaport/",
    "http://exa mple.com/",
    "",
])
def test_rejects_non_http_schemes_and_junk(url):
    assert validate_redirect_target(url, production=False).reason is RejectReason.BAD_SCHEME


def test_blocked_domain():
    verdict = validate_redirect_target("http://malicious-site.com", production=False)
    assert not verdict
    assert verdict.reason is RejectReason.BLOCKED_DOMAIN


def test_blocked_domain_is_case_insensitive():
    assert validate_redirect_target("http://Phishing-Site.COM/login", False).reason is RejectReason.BLOCKED_DOMAIN


@pytest.mark.parametrize("url,reason", [
    ("http://malicious-site.com./", RejectReason.BLOCKED_DOMAIN),
    ("https://example.tk./", RejectReason.BLOCKED_TLD),
])
def test_trailing_dot_does_not_bypass_blocklists(url, reason):
    assert validate_redirect_target(url, production=False).reason is reason


@pytest.mark.parametrize("url", ["https://example.tk", "http://a.b.ml/x", "https://free.GA", "http://x.cf"])
def test_blocked_tld(url):
    assert validate_redirect_target(url, production=False).reason is RejectReason.BLOCKED_TLD


def test_scheme_checked_before_domain():
    assert validate_redirect_target("ftp://malicious-site.com", False).reason is RejectReason.BAD_SCHEME


@pytest.mark.parametrize("url", [
    "http://127.0.0.1",
    "http://localhost:3000/admin",
    "http://0.0.0.0",
    "http://[::1]/",
    "http://10.0.0.5/internal",
    "http://192.168.1.1",
])
def test_private_network_blocked_in_production(url):
    assert validate_redirect_target(url, production=True).reason is RejectReason.PRIVATE_NETWORK_BLOCKED


@pytest.mark.parametrize("url", ["http://127.0.0.1", "http://localhost:3000/admin", "http://192.168.1.1"])
def test_private_network_allowed_outside_production(url):
    assert validate_redirect_target(url, production=False).ok


def test_is_deterministic():
    results = {validate_redirect_target("https://example.tk", True) for _ in range(5)}
    assert len(results) == 1


@pytest.mark.parametrize("url", [
    "http://127.1/",
    "http://2130706433/",
    "http://0x7f000001/",
    "http://[::ffff:127.0.0.1]/",
    "http://localhost./",
    "http://[fe80::1]/",
])
def test_alternate_spellings_of_private_hosts_are_blocked(url):
    assert validate_redirect_target(url, production=True).reason is RejectReason.PRIVATE_NETWORK_BLOCKED


def test_public_ipv6_literal_is_allowed():
    assert validate_redirect_target("http://[2001:4860:4860::8888]/", production=True).ok
