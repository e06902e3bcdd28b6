"""
Crawl Output Export
JSON, JSONL and CSV writers for products and failures.
"""

import csv
import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .models import CrawlFailure, FrontierStats, Product

logger = logging.getLogger(__name__)


def _prepare(filepath: str) -> Path:
    output_path = Path(filepath)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    return output_path


def export_json(
    products: Sequence[Product],
    filepath: str,
    failures: Sequence[CrawlFailure] = (),
    stats: Optional[FrontierStats] = None,
) -> str:
    """
    Export products (and failures) to a single JSON document.

    Returns:
        Absolute path to the created file
    """
    output_path = _prepare(filepath)

    data = {
        'metadata': {
            'total_products': len(products),
            'failures_count': len(failures),
            'frontier': stats.to_dict() if stats else None,
        },
        'products': [p.to_dict() for p in products],
        'failures': [f.to_dict() for f in failures],
    }

    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)

    logger.info(f"Exported JSON to {output_path.absolute()}")
    return str(output_path.absolute())


def export_jsonl(products: Iterable[Product], filepath: str) -> str:
    """One product per line, ready for the embedding pipeline."""
    output_path = _prepare(filepath)
    count = 0
    with open(output_path, 'w', encoding='utf-8') as f:
        for product in products:
            f.write(json.dumps(product.to_dict(), ensure_ascii=False) + "\n")
            count += 1
    logger.info(f"Exported {count} products to {output_path.absolute()}")
    return str(output_path.absolute())


def export_csv(products: List[Product], filepath: str) -> str:
    """Flat CSV, one row per product."""
    output_path = _prepare(filepath)

    if not products:
        logger.warning("No products to export")
        return str(output_path.absolute())

    fieldnames = list(products[0].to_flat_dict().keys())

    with open(output_path, 'w', encoding='utf-8', newline='') as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames, extrasaction='ignore')
        writer.writeheader()
        for product in products:
            writer.writerow(product.to_flat_dict())

    logger.info(f"Exported CSV to {output_path.absolute()}")
    return str(output_path.absolute())
