"""
The Iconic extractor.

Markup is addressed through ``data-testid`` attributes.  Category listings
lazy-load as the page scrolls, so the fetcher is asked for scroll passes.
"""

import logging
from typing import List
from urllib.parse import urlparse

from ..fetcher import FetchedPage
from ..models import Gender, Product
from .base import (
    ProductExtractor,
    absolute,
    optional_price,
    require_price,
    require_text,
    select_attrs,
    select_text,
    select_texts,
)

logger = logging.getLogger(__name__)


def gender_from_url(url: str) -> Gender:
    path = urlparse(url).path.lower()
    if "/women/" in path:
        return Gender.WOMEN
    if "/men/" in path:
        return Gender.MEN
    return Gender.UNISEX


class TheIconicExtractor(ProductExtractor):
    retailer_id = "the_iconic"
    site_name = "The Iconic"
    domains = ("theiconic.com.au",)
    ready_selector = '[data-testid="pdp-title"]'
    category_scroll_passes = 5

    async def extract(self, document: FetchedPage) -> Product:
        soup = document.soup()
        url = document.url

        colors = [
            label.replace("Color: ", "").strip()
            for label in select_attrs(soup, '[data-testid="color-option"]', "aria-label")
        ]

        product = Product(
            title=require_text(soup, '[data-testid="pdp-title"]', url),
            description=select_text(soup, '[data-testid="pdp-description"]'),
            price=require_price(soup, '[data-testid="price"]', url),
            sale_price=optional_price(soup, '[data-testid="sale-price"]'),
            currency=self.currency,
            brand=select_text(soup, '[data-testid="pdp-brand"]'),
            category=select_text(soup, ".breadcrumbs li:nth-child(2)"),
            subcategory=select_text(soup, ".breadcrumbs li:nth-child(3)") or None,
            colors=colors,
            sizes=select_texts(soup, '[data-testid="size-option"]'),
            gender=gender_from_url(url),
            image_urls=absolute(select_attrs(soup, '[data-testid="pdp-gallery"] img', "src"), url),
            source_url=url,
            source_site=self.site_name,
            available=soup.select_one('[data-testid="add-to-cart"]') is not None,
        )
        logger.info(f"[EXTRACT] {self.site_name}: {product.title}")
        return product

    async def discover_links(self, document: FetchedPage) -> List[str]:
        return select_attrs(document.soup(), '[data-testid="product-card"] a', "href")
