"""Tests for URL normalization, fingerprinting and HTML entity decoding."""

from tabstash.utils.html_entities import decode_html_entities
from tabstash.utils.url_utils import (
    NormalizationFlags,
    convert_tabxpert_url,
    extract_hostname,
    fingerprint,
    is_http_url,
    is_stashable_url,
    normalize_url,
    url_fingerprint,
)


class TestNormalizeUrl:
    """Test URL canonicalization."""

    def test_normalizes_host_port_query_and_trailing_slash(self):
        """Test the canonical form drops default port, tracking and trailing slash."""
        messy = normalize_url("https://Example.com:443/path/?b=2&a=1&utm_source=x")
        clean = normalize_url("https://example.com/path?a=1&b=2")

        assert messy == "https://example.com/path?a=1&b=2"
        assert messy == clean

    def test_drops_fragment(self):
        assert normalize_url("https://example.com/a#section") == "https://example.com/a"

    def test_keeps_non_default_port(self):
        assert normalize_url("http://example.com:8080/") == "http://example.com:8080/"

    def test_root_path_is_kept(self):
        assert normalize_url("https://example.com") == "https://example.com/"
        assert normalize_url("https://example.com///") == "https://example.com/"

    def test_tracking_params_kept_when_disabled(self):
        flags = NormalizationFlags(strip_tracking=False)
        result = normalize_url("https://example.com/?utm_source=x&a=1", flags)
        assert result == "https://example.com/?a=1&utm_source=x"

    def test_strips_known_tracking_params(self):
        result = normalize_url("https://example.com/?fbclid=1&gclid=2&ref=3&id=7")
        assert result == "https://example.com/?id=7"

    def test_strip_all_params(self):
        flags = NormalizationFlags(strip_all_params=True)
        assert normalize_url("https://example.com/p?id=1&x=2", flags) == "https://example.com/p"

    def test_non_http_url_unchanged(self):
        """Test non-http(s) URLs are returned as given."""
        assert normalize_url("chrome://settings/") == "chrome://settings/"
        assert normalize_url("about:blank") == "about:blank"
        assert normalize_url("not a url") == "not a url"

    def test_malformed_port_returns_input(self):
        url = "https://example.com:notaport/"
        assert normalize_url(url) == url

    def test_normalize_is_idempotent(self):
        once = normalize_url("HTTPS://Example.COM/Path/?z=1&y=2#frag")
        assert normalize_url(once) == once


class TestFingerprint:
    """Test URL fingerprints."""

    def test_fingerprint_is_sha256_hex(self):
        digest = fingerprint("https://example.com/")
        assert len(digest) == 64
        int(digest, 16)

    def test_equivalent_urls_share_fingerprint(self):
        assert url_fingerprint("https://example.com/a/?utm_medium=x") == url_fingerprint(
            "https://EXAMPLE.com/a"
        )

    def test_different_urls_differ(self):
        assert url_fingerprint("https://example.com/a") != url_fingerprint(
            "https://example.com/b"
        )

    def test_flags_change_equivalence(self):
        flags = NormalizationFlags(strip_all_params=True)
        assert url_fingerprint("https://e.com/?id=1", flags) == url_fingerprint(
            "https://e.com/?id=2", flags
        )
        assert url_fingerprint("https://e.com/?id=1") != url_fingerprint("https://e.com/?id=2")


class TestUrlClassification:
    """Test scheme checks and host extraction."""

    def test_is_http_url(self):
        assert is_http_url("http://example.com") is True
        assert is_http_url("https://example.com") is True
        assert is_http_url("ftp://example.com") is False

    def test_is_stashable_url(self):
        assert is_stashable_url("https://example.com") is True
        assert is_stashable_url("chrome://settings") is False
        assert is_stashable_url("chrome-extension://abc/popup.html") is False
        assert is_stashable_url("about:blank") is False
        assert is_stashable_url("file:///tmp/x.html") is False
        assert is_stashable_url("") is False
        assert is_stashable_url(None) is False

    def test_extract_hostname(self):
        assert extract_hostname("https://www.example.com/path") == "www.example.com"
        assert extract_hostname("about:blank") is None


class TestTabXpertConversion:
    """Test suspended-tab URL conversion."""

    def test_converts_tabxpert_url(self):
        url = (
            "https://s.tabxpert.com/#!title=Example&favIcon=x"
            "&url=https%3A%2F%2Fexample.com%2Fpage%3Fa%3D1"
        )
        assert convert_tabxpert_url(url) == "https://example.com/page?a=1"

    def test_other_urls_unchanged(self):
        assert convert_tabxpert_url("https://example.com/") == "https://example.com/"

    def test_tabxpert_url_without_target_unchanged(self):
        url = "https://s.tabxpert.com/#!title=Example"
        assert convert_tabxpert_url(url) == url


class TestHtmlEntities:
    """Test HTML entity decoding."""

    def test_named_entities(self):
        assert decode_html_entities("Tom &amp; Jerry &lt;3") == "Tom & Jerry <3"
        assert decode_html_entities("&AMP;") == "&"

    def test_numeric_entities(self):
        assert decode_html_entities("&#8211; &#x27;quoted&#x27;") == "– 'quoted'"

    def test_unknown_entities_left_alone(self):
        assert decode_html_entities("&bogus; &#99999999999;") == "&bogus; &#99999999999;"

    def test_plain_text_unchanged(self):
        assert decode_html_entities("Nothing to decode") == "Nothing to decode"
