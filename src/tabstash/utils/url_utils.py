"""URL normalization, fingerprinting and classification utilities."""

import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, parse_qsl, unquote, urlencode, urlsplit, urlunsplit

# Query parameters dropped when tracking stripping is enabled
TRACKING_PARAMS_EXACT = frozenset({
    "fbclid", "gclid", "dclid", "msclkid", "ga_source", "ga_medium", "ga_campaign",
    "yclid", "vero_conv", "igshid", "spm", "sc_channel", "sc_campaign", "sc_content",
    "sc_medium", "sc_source", "mc_cid", "mc_eid", "ref", "ref_src", "ref_url", "referrer",
})
TRACKING_PARAMS_PREFIXES = (
    "utm_", "hsa_", "pk_", "icn", "mkt_", "aff_", "sr_", "xtor", "oly_",
)

DEFAULT_PORTS = {"http": 80, "https": 443}

NON_STASHABLE_PREFIXES = (
    "chrome://",
    "chrome-extension://",
    "edge://",
    "about:",
    "devtools://",
    "file://",
    "data:",
    "blob:",
    "view-source:",
)

TABXPERT_HOST_MARKER = "s.tabxpert.com/"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NormalizationFlags:
    """Snapshot of the URL comparison settings for one operation."""

    strip_all_params: bool = False
    strip_tracking: bool = True


def _is_tracking_param(key: str) -> bool:
    if key in TRACKING_PARAMS_EXACT:
        return True
    return any(key == prefix or key.startswith(prefix) for prefix in TRACKING_PARAMS_PREFIXES)


def _netloc(parsed) -> str:
    """Rebuild the authority with a lowercased host and no default port."""
    host = parsed.hostname or ""
    if ":" in host:
        host = f"[{host}]"

    port = parsed.port  # raises ValueError on a malformed port
    if port is not None and DEFAULT_PORTS.get(parsed.scheme) != port:
        host = f"{host}:{port}"

    userinfo = ""
    if "@" in parsed.netloc:
        userinfo = parsed.netloc.rsplit("@", 1)[0] + "@"

    return userinfo + host


def normalize_url(url: str, flags: NormalizationFlags = NormalizationFlags()) -> str:
    """Canonicalize an http(s) URL for comparison.

    Non-http(s) and unparseable URLs are returned unchanged. The result drops
    the fragment and default port, lowercases the host, sorts the query by key
    (after optional stripping) and removes trailing slashes from the path.

    Args:
        url: URL to normalize
        flags: Normalization settings snapshot

    Returns:
        Normalized URL, or the input when it cannot be normalized
    """
    try:
        parsed = urlsplit(url)
        scheme = parsed.scheme.lower()
        if scheme not in DEFAULT_PORTS or not parsed.hostname:
            return url

        netloc = _netloc(parsed)

        if flags.strip_all_params:
            query = ""
        else:
            params = parse_qsl(parsed.query, keep_blank_values=True)
            if flags.strip_tracking:
                params = [(k, v) for k, v in params if not _is_tracking_param(k)]
            params.sort(key=lambda pair: pair[0])
            query = urlencode(params)

        path = parsed.path or "/"
        if path != "/" and path.endswith("/"):
            path = re.sub(r"/+$", "", path) or "/"

        return urlunsplit((scheme, netloc, path, query, ""))
    except (ValueError, TypeError, AttributeError):
        return url


def fingerprint(normalized: str) -> str:
    """SHA-256 hex digest of an already normalized URL."""
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def url_fingerprint(url: str, flags: NormalizationFlags = NormalizationFlags()) -> str:
    """Normalize and fingerprint a URL in one step."""
    return fingerprint(normalize_url(url, flags))


def is_http_url(url: str) -> bool:
    """Check if a URL uses the http or https scheme."""
    return url.startswith("http://") or url.startswith("https://")


def is_stashable_url(url: Optional[str]) -> bool:
    """Check if a tab URL may be stashed (internal browser pages may not).

    Example:
        "chrome://settings" -> False
        "https://example.com" -> True
    """
    if not url:
        return False
    lower = url.lower()
    if lower.startswith(NON_STASHABLE_PREFIXES):
        return False
    return is_http_url(lower)


def extract_hostname(url: str) -> Optional[str]:
    """Extract the hostname from a URL, or None if there is none."""
    try:
        return urlsplit(url).hostname or None
    except ValueError:
        return None


def convert_tabxpert_url(url: str) -> str:
    """Convert a TabXpert suspended-tab URL into the real page URL.

    TabXpert format: https://s.tabxpert.com/#!title=...&favIcon=...&url=...

    Returns:
        The real URL, or the input when it is not a convertible TabXpert URL
    """
    if TABXPERT_HOST_MARKER not in url:
        return url

    try:
        fragment = urlsplit(url).fragment
        if fragment.startswith("!"):
            fragment = fragment[1:]
        real_url = parse_qs(fragment).get("url")
        if real_url and real_url[0]:
            return unquote(real_url[0])
    except ValueError as e:
        logger.warning(f"Failed to parse TabXpert URL {url[:100]}: {e}")

    return url
