"""
Display catalog client: best-effort product title and image lookup.
"""

import logging
from dataclasses import replace
from typing import Optional

import httpx

from activator.clients.base import BaseClient, decode_json
from activator.services.activation.exceptions import ActivationError
from activator.services.activation.models import ProductInfo, select_image

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_URL = "https://displaycatalog.mp.microsoft.com"
FALLBACK_TITLE = "Microsoft Product"


class CatalogClient(BaseClient):
    def __init__(
        self,
        base_url: str = DEFAULT_CATALOG_URL,
        *,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url, timeout=timeout, transport=transport)

    async def enrich(self, info: ProductInfo, market: str) -> ProductInfo:
        """Fill title and image from the catalog; returns `info` unchanged on any failure."""
        if not info.product_id:
            return info
        try:
            response = await self.request(
                "GET",
                self.url(f"/v7.0/products/{info.product_id}"),
                params={"market": market, "languages": "en-US"},
            )
        except ActivationError as e:
            logger.info("Catalog lookup failed: product_id=%s error=%s", info.product_id, e.kind.value)
            return info

        data = decode_json(response)
        if response.status_code != 200 or not isinstance(data, dict):
            return info
        product = data.get("Product")
        if not isinstance(product, dict):
            return info
        localized = product.get("LocalizedProperties")
        if not isinstance(localized, list) or not localized or not isinstance(localized[0], dict):
            return info

        properties = localized[0]
        title = properties.get("ProductTitle") or properties.get("ShortTitle") or FALLBACK_TITLE
        images = properties.get("Images") if isinstance(properties.get("Images"), list) else []
        return replace(info, title=title, image_url=select_image(images) or info.image_url)
