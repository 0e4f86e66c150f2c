"""Website crawler: URL filtering, discovery, content extraction and the crawl loop."""

from sitekb.services.crawler.site_crawler import SiteCrawler
from sitekb.services.crawler.url_filters import UrlFilter

__all__ = ["SiteCrawler", "UrlFilter"]
