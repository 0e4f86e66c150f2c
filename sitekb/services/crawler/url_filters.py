"""URL normalization and pre-fetch filtering.

A discovered link is resolved against the page it appeared on, stripped of
its fragment and query string, and rejected unless it has exactly the
crawl's origin.  :class:`UrlFilter` then rejects non-document extensions,
authentication/account pages, error pages and operator-supplied patterns,
so such URLs are never fetched.
"""

from __future__ import annotations

import re
from urllib.parse import urljoin, urlsplit, urlunsplit

# Path suffixes that never hold crawlable HTML.
SKIP_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
        ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".ico", ".bmp",
        ".css", ".js", ".mjs", ".map",
        ".xml", ".json", ".csv", ".rss", ".atom",
        ".zip", ".gz", ".tar", ".rar", ".7z", ".dmg", ".exe",
        ".mp3", ".wav", ".ogg", ".mp4", ".avi", ".mov", ".webm", ".mkv",
        ".woff", ".woff2", ".ttf", ".eot",
    }
)

# Matched against the lower-cased path, each as a whole path segment prefix
# ("/login", "/login/", "/login.php" match; "/logins-explained" does not).
LOGIN_PATH_PATTERNS: tuple[str, ...] = (
    "login", "signin", "sign-in", "auth", "authentication",
    "logout", "signout", "sign-out", "register", "signup", "sign-up",
    "forgot-password", "reset-password", "password-reset", "password/reset",
    "admin/login", "wp-admin", "wp-login",
)

ERROR_PATH_PATTERNS: tuple[str, ...] = (
    "404", "error", "not-found", "500", "503", "unauthorized", "forbidden",
)

_DEFAULT_PORTS = {"http": 80, "https": 443}


def _compile_segments(patterns: tuple[str, ...]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(p) for p in patterns)
    return re.compile(rf"/(?:{alternatives})(?:[/._-]|$)")


_LOGIN_RE = _compile_segments(LOGIN_PATH_PATTERNS)
_ERROR_RE = _compile_segments(ERROR_PATH_PATTERNS)


def normalize_url(href: str, page_url: str) -> str | None:
    """Resolve *href* against *page_url* and drop fragment and query string.

    Returns ``None`` for non-HTTP(S) links (``mailto:``, ``javascript:``,
    ``tel:``) and for unparsable input.  Scheme and host are lower-cased,
    default ports removed, and an empty path becomes ``/``.
    """
    href = (href or "").strip()
    if not href or href.startswith("#"):
        return None
    try:
        parts = urlsplit(urljoin(page_url, href))
        port = parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS or not parts.hostname:
        return None

    host = parts.hostname.lower()
    netloc = host if port in (None, _DEFAULT_PORTS[scheme]) else f"{host}:{port}"
    return urlunsplit((scheme, netloc, parts.path or "/", "", ""))


def origin_of(url: str) -> tuple[str, str, int | None]:
    """Return ``(scheme, host, port)`` with the default port made explicit."""
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    return scheme, (parts.hostname or "").lower(), parts.port or _DEFAULT_PORTS.get(scheme)


def same_origin(url: str, base_url: str) -> bool:
    """``True`` if *url* shares scheme, host and port with *base_url* exactly."""
    try:
        return origin_of(url) == origin_of(base_url)
    except ValueError:
        return False


class UrlFilter:
    """Pre-fetch URL rejection rules.

    Parameters
    ----------
    filter_login_pages:
        Reject authentication and account-lifecycle paths.
    filter_error_pages:
        Reject error-page paths.
    custom_patterns:
        Extra regular expressions, matched case-insensitively against both
        the path and the full URL.
    """

    def __init__(
        self,
        filter_login_pages: bool = True,
        filter_error_pages: bool = True,
        custom_patterns: list[str] | None = None,
    ) -> None:
        self.filter_login_pages = filter_login_pages
        self.filter_error_pages = filter_error_pages
        try:
            self._custom = [re.compile(p, re.IGNORECASE) for p in custom_patterns or []]
        except re.error as exc:
            raise ValueError(f"Invalid custom filter pattern: {exc}") from exc

    def rejection_reason(self, url: str) -> str | None:
        """Return why *url* must not be fetched, or ``None`` if it may be."""
        path = urlsplit(url).path.lower() or "/"

        if has_skipped_extension(path):
            return "non_document_extension"
        if self.filter_login_pages and _LOGIN_RE.search(path):
            return "login_url"
        if self.filter_error_pages and _ERROR_RE.search(path):
            return "error_url"
        for pattern in self._custom:
            if pattern.search(path) or pattern.search(url):
                return "custom_pattern"
        return None

    def is_allowed(self, url: str) -> bool:
        return self.rejection_reason(url) is None


def has_skipped_extension(path: str) -> bool:
    last_segment = path.rsplit("/", 1)[-1].lower()
    if "." not in last_segment:
        return False
    return "." + last_segment.rsplit(".", 1)[-1] in SKIP_EXTENSIONS


def origin_url(url: str) -> str:
    """``scheme://host[:port]`` of *url*, without a trailing slash."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"
