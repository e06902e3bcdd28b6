"""
Extractor Registry
==================
Maps retailer identifiers to ``ProductExtractor`` instances and resolves
the extractor for a URL by host.

A registry is an ordinary object owned by one crawl session; there is no
process-wide registry.

Usage::

    registry = ExtractorRegistry.default()       # built-in retailers
    extractor = registry.for_url(url)            # detect by host
    extractor = registry.get("cotton_on")        # explicit lookup
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Mapping, Optional

from .base import ProductExtractor

logger = logging.getLogger(__name__)


class ExtractorRegistry:
    """Retailer id → extractor lookup."""

    def __init__(self, extractors: Optional[List[ProductExtractor]] = None):
        self._extractors: Dict[str, ProductExtractor] = {}
        for extractor in extractors or ():
            self.register(extractor)

    def register(self, extractor: ProductExtractor, retailer_id: str = None) -> None:
        """Register *extractor* under *retailer_id* (defaults to its own id)."""
        key = (retailer_id or extractor.retailer_id or "").lower()
        if not key:
            raise ValueError(f"{extractor!r} has no retailer_id")
        if key in self._extractors:
            logger.warning(f"[REGISTRY] Replacing extractor for {key}")
        self._extractors[key] = extractor
        logger.debug(f"[REGISTRY] Registered extractor: {key}")

    def get(self, retailer_id: str) -> Optional[ProductExtractor]:
        return self._extractors.get(retailer_id.lower())

    def for_url(self, url: str) -> Optional[ProductExtractor]:
        """First registered extractor whose ``detect(url)`` is True."""
        for extractor in self._extractors.values():
            if extractor.detect(url):
                return extractor
        return None

    def retailers(self) -> List[str]:
        return list(self._extractors)

    def __len__(self) -> int:
        return len(self._extractors)

    def __iter__(self) -> Iterator[ProductExtractor]:
        return iter(list(self._extractors.values()))

    def __contains__(self, retailer_id: str) -> bool:
        return retailer_id.lower() in self._extractors

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, ProductExtractor]) -> "ExtractorRegistry":
        registry = cls()
        for retailer_id, extractor in mapping.items():
            registry.register(extractor, retailer_id)
        return registry

    @classmethod
    def default(cls) -> "ExtractorRegistry":
        """Registry holding every built-in retailer."""
        from .cotton_on import CottonOnExtractor
        from .the_iconic import TheIconicExtractor
        return cls([CottonOnExtractor(), TheIconicExtractor()])
