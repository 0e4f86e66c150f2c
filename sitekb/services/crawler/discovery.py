"""Seed discovery: robots.txt rules and XML sitemaps.

Both are best-effort.  A missing or broken ``robots.txt`` allows every
URL; a missing or malformed sitemap contributes nothing.  Neither can fail
the crawl.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from urllib.robotparser import RobotFileParser

import httpx
import structlog

from sitekb.services.crawler.url_filters import same_origin

logger = structlog.get_logger(logger_name=__name__)

WELL_KNOWN_SITEMAPS: tuple[str, ...] = ("/sitemap.xml", "/sitemap_index.xml")

_MAX_SITEMAP_DEPTH = 3
_MAX_SITEMAP_FILES = 50


class RobotsPolicy:
    """Parsed ``robots.txt`` for one origin."""

    def __init__(self, parser: RobotFileParser | None, user_agent: str) -> None:
        self._parser = parser
        self._user_agent = user_agent

    @classmethod
    def allow_all(cls, user_agent: str = "*") -> RobotsPolicy:
        return cls(None, user_agent)

    @classmethod
    def from_text(cls, text: str, user_agent: str) -> RobotsPolicy:
        parser = RobotFileParser()
        parser.parse(text.splitlines())
        return cls(parser, user_agent)

    def can_fetch(self, url: str) -> bool:
        if self._parser is None:
            return True
        return self._parser.can_fetch(self._user_agent, url)

    @property
    def sitemaps(self) -> list[str]:
        if self._parser is None:
            return []
        return list(self._parser.site_maps() or [])


async def fetch_robots(
    client: httpx.AsyncClient,
    origin_url: str,
    user_agent: str,
    headers: dict[str, str] | None = None,
) -> RobotsPolicy:
    """Fetch and parse ``{origin}/robots.txt``; any failure allows everything."""
    robots_url = origin_url.rstrip("/") + "/robots.txt"
    try:
        response = await client.get(robots_url, headers=headers)
    except httpx.HTTPError as exc:
        logger.debug("robots_unavailable", url=robots_url, error=str(exc))
        return RobotsPolicy.allow_all(user_agent)

    if response.status_code != 200:
        logger.debug("robots_missing", url=robots_url, status=response.status_code)
        return RobotsPolicy.allow_all(user_agent)

    policy = RobotsPolicy.from_text(response.text, user_agent)
    logger.debug("robots_loaded", url=robots_url, sitemaps=len(policy.sitemaps))
    return policy


def parse_sitemap(content: str) -> tuple[list[str], list[str]]:
    """Split a sitemap document into ``(page_urls, nested_sitemap_urls)``.

    Handles both ``<urlset>`` and ``<sitemapindex>`` roots, with or without
    the sitemaps.org namespace.  Unparsable content yields two empty lists.
    """
    try:
        root = ET.fromstring(content.strip())
    except ET.ParseError:
        return [], []

    def _local(tag: str) -> str:
        return tag.rsplit("}", 1)[-1]

    pages: list[str] = []
    nested: list[str] = []
    root_tag = _local(root.tag)
    entry_tag = "sitemap" if root_tag == "sitemapindex" else "url"
    target = nested if root_tag == "sitemapindex" else pages

    for element in root.iter():
        if _local(element.tag) != entry_tag:
            continue
        for child in element:
            if _local(child.tag) == "loc" and child.text and child.text.strip():
                target.append(child.text.strip())
                break

    return pages, nested


async def discover_sitemap_urls(
    client: httpx.AsyncClient,
    candidates: list[str],
    headers: dict[str, str] | None = None,
) -> list[str]:
    """Collect page URLs from *candidates*, following sitemap indexes.

    Each sitemap is fetched at most once; nesting is bounded by depth and
    by total file count.  A sitemap index is only followed to sitemaps on
    its own origin.  Page URLs are returned in discovery order,
    unfiltered; the crawler applies origin and URL filters.
    """
    seen: set[str] = set()
    pages: list[str] = []
    frontier: list[tuple[str, int]] = [(url, 0) for url in candidates]

    while frontier and len(seen) < _MAX_SITEMAP_FILES:
        sitemap_url, depth = frontier.pop(0)
        if sitemap_url in seen or depth > _MAX_SITEMAP_DEPTH:
            continue
        seen.add(sitemap_url)

        try:
            response = await client.get(sitemap_url, headers=headers)
        except httpx.HTTPError as exc:
            logger.debug("sitemap_unavailable", url=sitemap_url, error=str(exc))
            continue
        if response.status_code != 200:
            continue

        found_pages, nested = parse_sitemap(response.text)
        pages.extend(found_pages)
        for child in nested:
            if same_origin(child, sitemap_url):
                frontier.append((child, depth + 1))
            else:
                logger.debug("sitemap_cross_origin_skipped", url=child, index=sitemap_url)
        logger.debug(
            "sitemap_parsed",
            url=sitemap_url,
            pages=len(found_pages),
            nested=len(nested),
        )

    return pages
