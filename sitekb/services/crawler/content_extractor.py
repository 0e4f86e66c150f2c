"""HTML content extraction with BeautifulSoup.

Turns one fetched HTML document into a title, the main-content text and
the page's outgoing links, and classifies login and error pages that the
URL filters did not catch.

Extraction order:

1. collect ``<a href>`` links from the untouched document (navigation
   menus are the main source of links, so this happens before stripping);
2. strip non-content elements (scripts, styles, navigation, headers,
   footers, iframes, ads, cookie banners);
3. title = ``<title>``, else the first ``<h1>``, else the URL;
4. text = the first main-content container that matches, else ``<body>``,
   with every whitespace run collapsed to a single space.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from bs4 import BeautifulSoup

_STRIP_SELECTOR = (
    "script, style, nav, header, footer, iframe, noscript, svg, "
    ".navigation, .sidebar, .menu, .cookie-banner, .ad, .advertisement"
)

_MAIN_CONTENT_SELECTORS: tuple[str, ...] = (
    "main",
    "article",
    '[role="main"]',
    ".content",
    ".main-content",
    "#content",
    "#main",
)

LOGIN_TITLE_MARKERS: tuple[str, ...] = (
    "login", "log in", "sign in", "sign-in", "sign up", "sign-up",
    "register", "authentication",
)
_LOGIN_FORM_MARKERS: tuple[str, ...] = ("login", "log in", "sign in", "email", "username")

ERROR_TITLE_MARKERS: tuple[str, ...] = (
    "404", "not found", "page not found", "error", "unauthorized",
    "forbidden", "server error", "500", "503",
)
_ERROR_BODY_MARKERS: tuple[str, ...] = (
    "404", "not found", "page not found", "error occurred", "something went wrong",
    "unauthorized access", "access denied", "forbidden", "internal server error",
)
# Pages this short that mention an error phrase are treated as error pages.
_ERROR_BODY_MAX_CHARS = 200

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class ExtractedPage:
    title: str
    text: str
    links: list[str] = field(default_factory=list)
    # "login_page" / "error_page" when the content marks the page as junk.
    rejection: str | None = None


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def extract_page(
    html: str,
    url: str,
    filter_login_pages: bool = True,
    filter_error_pages: bool = True,
) -> ExtractedPage:
    """Parse *html* fetched from *url* into an :class:`ExtractedPage`.

    Links are returned raw (``href`` values); the crawler resolves and
    filters them.
    """
    soup = BeautifulSoup(html, "html.parser")

    links = [a["href"] for a in soup.find_all("a", href=True) if a["href"].strip()]

    for element in soup.select(_STRIP_SELECTOR):
        if not getattr(element, "decomposed", False):
            element.decompose()

    title = _extract_title(soup) or url

    rejection: str | None = None
    if filter_login_pages and _looks_like_login(soup, title):
        rejection = "login_page"
    elif filter_error_pages and _looks_like_error(soup, title):
        rejection = "error_page"

    return ExtractedPage(
        title=title,
        text=_extract_main_text(soup),
        links=links,
        rejection=rejection,
    )


def _extract_title(soup: BeautifulSoup) -> str:
    if soup.title is not None:
        title = collapse_whitespace(soup.title.get_text(" "))
        if title:
            return title
    h1 = soup.find("h1")
    if h1 is not None:
        return collapse_whitespace(h1.get_text(" "))
    return ""


def _extract_main_text(soup: BeautifulSoup) -> str:
    for selector in _MAIN_CONTENT_SELECTORS:
        container = soup.select_one(selector)
        if container is not None:
            text = collapse_whitespace(container.get_text(" "))
            if text:
                return text
    root = soup.body or soup
    return collapse_whitespace(root.get_text(" "))


def _looks_like_login(soup: BeautifulSoup, title: str) -> bool:
    title_lower = title.lower()
    if any(marker in title_lower for marker in LOGIN_TITLE_MARKERS):
        return True

    for password_input in soup.select('input[type="password"]'):
        form = password_input.find_parent("form")
        if form is None:
            continue
        form_text = collapse_whitespace(form.get_text(" ")).lower()
        # Placeholder and name attributes carry the hint on minimal forms.
        for field_input in form.find_all("input"):
            for key in ("name", "placeholder", "type"):
                value = field_input.get(key)
                if value:
                    form_text += " " + str(value).lower()
        if any(marker in form_text for marker in _LOGIN_FORM_MARKERS):
            return True
    return False


def _looks_like_error(soup: BeautifulSoup, title: str) -> bool:
    title_lower = title.lower()
    if any(marker in title_lower for marker in ERROR_TITLE_MARKERS):
        return True

    root = soup.body or soup
    body_text = collapse_whitespace(root.get_text(" ")).lower()
    return len(body_text) < _ERROR_BODY_MAX_CHARS and any(
        marker in body_text for marker in _ERROR_BODY_MARKERS
    )
