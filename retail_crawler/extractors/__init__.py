"""Retailer-specific product extractors."""

from .base import ProductExtractor
from .registry import ExtractorRegistry
from .cotton_on import CottonOnExtractor
from .the_iconic import TheIconicExtractor

__all__ = [
    'ProductExtractor',
    'ExtractorRegistry',
    'CottonOnExtractor',
    'TheIconicExtractor',
]
