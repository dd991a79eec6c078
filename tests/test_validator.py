import pytest

from urlrisk_agent.models import ValidationOptions
from urlrisk_agent.validator import ip_literal, is_blocked_address, validate


def test_missing_scheme_defaults_to_https():
    r = validate("example.com")
    assert r.is_valid
    assert r.normalized_url == "https://example.com/"


def test_normalizes_case_and_default_port():
    r = validate("HTTPS://Example.COM:443/Path?q=1")
    assert r.is_valid
    assert r.normalized_url == "https://example.com/Path?q=1"


def test_keeps_non_default_port():
    assert validate("http://example.com:8080").normalized_url == "http://example.com:8080/"


def test_host_with_port_and_no_scheme():
    assert validate("example.com:8443/x").normalized_url == "https://example.com:8443/x"


def test_idn_host_is_punycoded():
    r = validate("https://bücher.de/")
    assert r.is_valid
    assert r.normalized_url == "https://xn--bcher-kva.de/"


@pytest.mark.parametrize("url", ["", "   "])
def test_empty_is_invalid_format(url):
    assert validate(url).error_kind == "invalid-format"


def test_too_long():
    url = "https://example.com/" + "a" * 2100
    assert validate(url).error_kind == "too-long"
    assert validate(url, ValidationOptions(max_length=5000)).is_valid


@pytest.mark.parametrize("url", ["https://exa\nmple.com/", "https://example.com/\x00", "https://example.com/\ta"])
def test_control_characters_are_security_risk(url):
    assert validate(url).error_kind == "security-risk"


@pytest.mark.parametrize(
    "url",
    [
        "javascript:alert(1)",
        "JavaScript:alert(document.cookie)",
        "data:text/html;base64,PHNjcmlwdD4=",
        "vbscript:msgbox(1)",
        "file:///etc/passwd",
    ],
)
def test_script_schemes_are_security_risk(url):
    assert validate(url).error_kind == "security-risk"


@pytest.mark.parametrize("url", ["ftp://example.com/file", "mailto:someone@example.com", "gopher://example.com/"])
def test_other_schemes_are_unsupported(url):
    assert validate(url).error_kind == "unsupported-protocol"


def test_allowed_protocols_option():
    opts = ValidationOptions(allowed_protocols=["https"])
    assert validate("http://example.com", opts).error_kind == "unsupported-protocol"
    assert validate("https://example.com", opts).is_valid


@pytest.mark.parametrize(
    "url",
    [
        "http://192.168.1.1/admin",
        "http://10.0.0.5/",
        "http://172.16.3.4/",
        "http://127.0.0.1/",
        "http://169.254.169.254/latest/meta-data/",
        "http://[::1]/",
        "http://[fe80::1]/",
        "http://[::ffff:10.0.0.1]/",
        "http://0.0.0.0/",
        "http://100.64.1.1/",
        "http://localhost/",
        "http://api.localhost/",
        "http://metadata.google.internal/",
    ],
)
def test_ssrf_targets_are_security_risk(url):
    r = validate(url)
    assert not r.is_valid
    assert r.error_kind == "security-risk"


@pytest.mark.parametrize("url", ["http://2130706433/", "http://0x7f000001/", "http://0177.0.0.1/", "http://0x7f.1/"])
def test_obfuscated_ipv4_forms_are_blocked(url):
    assert validate(url).error_kind == "security-risk"


def test_private_and_localhost_can_be_allowed():
    assert validate("http://192.168.1.1/", ValidationOptions(allow_private_ips=True)).is_valid
    assert validate("http://localhost:3000/", ValidationOptions(allow_localhost=True)).is_valid
    assert not validate("http://10.0.0.1/", ValidationOptions(allow_localhost=True)).is_valid


def test_public_ip_literal_is_valid():
    r = validate("http://8.8.8.8/dns")
    assert r.is_valid
    assert r.normalized_url == "http://8.8.8.8/dns"


@pytest.mark.parametrize("url", ["https://example", "https://-bad-.com/", "https://exa_mple.com/", "https://1.2.3.4.5/"])
def test_bad_domains(url):
    assert validate(url).error_kind == "invalid-domain"


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com//evil.com",
        "https://example.com/%2F%2Fevil.com",
        "https://example.com/?next=javascript:alert(1)",
        "https://example.com/?next=javascript%3Aalert(1)",
    ],
)
def test_redirect_and_script_patterns(url):
    assert validate(url).error_kind == "security-risk"


def test_invalid_port_is_invalid_format():
    assert validate("https://example.com:99999/").error_kind == "invalid-format"


def test_ip_literal_and_blocked_address():
    assert str(ip_literal("2130706433")) == "127.0.0.1"
    assert ip_literal("example.com") is None
    assert is_blocked_address(ip_literal("10.1.2.3"))
    assert not is_blocked_address(ip_literal("93.184.216.34"))
