"""
Cotton On extractor.

Product pages carry plain class-based markup; gender is inferred from the
breadcrumb category.
"""

import logging
import re
from typing import List, Optional

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


def gender_from_category(category: str) -> Gender:
    # "women" first: "women" contains "men"
    lowered = category.lower()
    if re.search(r"\bwom[ae]n", lowered):
        return Gender.WOMEN
    if re.search(r"\bmen", lowered):
        return Gender.MEN
    return Gender.UNISEX


class CottonOnExtractor(ProductExtractor):
    retailer_id = "cotton_on"
    site_name = "Cotton On"
    domains = ("cottonon.com",)
    ready_selector = ".product-title"

    async def extract(self, document: FetchedPage) -> Product:
        soup = document.soup()
        url = document.url

        title = require_text(soup, ".product-title", url)
        price = require_price(soup, ".product-price", url)
        category = select_text(soup, ".breadcrumb-item:nth-child(2)")
        subcategory: Optional[str] = select_text(soup, ".breadcrumb-item:nth-child(3)") or None

        product = Product(
            title=title,
            description=select_text(soup, ".product-description"),
            price=price,
            sale_price=optional_price(soup, ".product-sale-price"),
            currency=self.currency,
            brand=self.site_name,
            category=category,
            subcategory=subcategory,
            colors=select_attrs(soup, ".color-swatch", "data-color"),
            sizes=select_texts(soup, ".size-swatch"),
            gender=gender_from_category(category),
            image_urls=absolute(select_attrs(soup, ".product-image img", "src"), url),
            source_url=url,
            source_site=self.site_name,
            available=soup.select_one(".out-of-stock") is None,
        )
        logger.info(f"[EXTRACT] {self.site_name}: {product.title}")
        return product

    async def discover_links(self, document: FetchedPage) -> List[str]:
        return select_attrs(document.soup(), ".product-card a", "href")
