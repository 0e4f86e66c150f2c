"""Abstract base class for headless page renderers.

A renderer executes a page's JavaScript and returns the resulting DOM as
HTML.  The crawler uses it for sites whose content only appears after
client-side rendering.  No implementation ships with sitekb; hosts that
need one (e.g. a Playwright-backed service) inject it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class IPageRenderer(ABC):
    """Contract for JavaScript-capable page rendering."""

    @abstractmethod
    async def render(self, url: str) -> str | None:
        """Return the rendered HTML for *url*, or ``None`` if rendering failed.

        Implementations must not raise for ordinary page failures; the
        crawler falls back to the statically fetched HTML on ``None``.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this renderer."""
