"""Mockup generation for store products.

Sync products often arrive without lifestyle images. For each color of a
product we ask the provider to render front/back mockups from the variant's
print files, wait for every task, and only then insert the returned images.
A task that fails or times out simply contributes no images.
"""

import logging
from typing import Any

from src.db.order_store import OrderStore
from src.errors.registry import get_error
from src.fulfillment.client import FulfillmentClient
from src.fulfillment.errors import FulfillmentError, LocalStoreError
from src.fulfillment.models import (
    MockupGenerationResult,
    MockupTask,
    NewProductImage,
    SyncVariant,
    SyncVariantFile,
)
from src.fulfillment.task_poller import TaskPoller

logger = logging.getLogger(__name__)

NAME_SEPARATOR = " / "
FRONT_FILE_TYPES = ("default", "front")
BACK_FILE_TYPES = ("back",)
MOCKUP_TECHNIQUE = "DTG"
MOCKUP_FORMAT = "jpg"
MOCKUP_WIDTH = 1000
# Generated mockups sort after images uploaded by hand.
MOCKUP_SORT_ORDER = 10


def parse_color(variant_name: str) -> str | None:
    """Extract the color from a "Product / Color / Size" variant name.

    Returns:
        The second-to-last segment, or None when the name has no separator.
    """
    parts = variant_name.split(NAME_SEPARATOR)
    if len(parts) < 2:
        return None
    return parts[-2].strip() or None


def group_variants_by_color(variants: list[SyncVariant]) -> dict[str, SyncVariant]:
    """Pick one representative variant per color (the first one seen)."""
    by_color: dict[str, SyncVariant] = {}
    for variant in variants:
        color = parse_color(variant.product.name or variant.name)
        if color is not None and color not in by_color:
            by_color[color] = variant
    return by_color


def _find_file(files: list[SyncVariantFile], types: tuple[str, ...]) -> SyncVariantFile | None:
    return next((f for f in files if f.type in types), None)


def _placement(name: str, file: SyncVariantFile | None) -> dict[str, Any] | None:
    url = (file.preview_url or file.url) if file is not None else None
    if not url:
        return None
    return {
        "placement": name,
        "technique": MOCKUP_TECHNIQUE,
        "layers": [{"type": "file", "url": url}],
    }


def build_mockup_product(variant: SyncVariant) -> dict[str, Any] | None:
    """Build one mockup-task product entry for a representative variant.

    Returns:
        The request entry, or None when the variant has no usable front or
        back print file.
    """
    placements = [
        p
        for p in (
            _placement("front", _find_file(variant.files, FRONT_FILE_TYPES)),
            _placement("back", _find_file(variant.files, BACK_FILE_TYPES)),
        )
        if p is not None
    ]
    if not placements:
        return None
    return {
        "source": "catalog",
        "catalog_product_id": variant.product.product_id,
        "catalog_variant_ids": [variant.product.variant_id],
        "placements": placements,
        "format": MOCKUP_FORMAT,
        "width": MOCKUP_WIDTH,
    }


def collect_images(
    tasks: list[MockupTask | None],
    color_by_variant: dict[int, str],
    product_name: str,
) -> list[NewProductImage]:
    """Turn completed tasks into image rows; None tasks are skipped."""
    images: list[NewProductImage] = []
    for task in tasks:
        if task is None:
            continue
        for variant_mockups in task.catalog_variant_mockups:
            color = color_by_variant.get(variant_mockups.catalog_variant_id)
            if color is None:
                continue
            for mockup in variant_mockups.mockups:
                if not mockup.mockup_url:
                    continue
                images.append(
                    NewProductImage(
                        url=mockup.mockup_url,
                        alt=f"{product_name} - {color} ({mockup.placement})",
                        color=color,
                        sort_order=MOCKUP_SORT_ORDER,
                    )
                )
    return images


class MockupGenerator:
    """Generates and stores mockup images for one sync product at a time."""

    def __init__(
        self,
        client: FulfillmentClient,
        store: OrderStore,
        poller: TaskPoller | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.poller = poller or TaskPoller(client.get_mockup_task, client.config.poller)

    async def generate(self, external_product_id: str | int) -> MockupGenerationResult:
        """Generate mockups for a provider sync product and store them.

        Args:
            external_product_id: Provider sync product id.

        Returns:
            MockupGenerationResult with the number of images inserted.
            Failed or timed-out tasks reduce the count; they are not errors.
        """
        product_key = str(external_product_id)
        try:
            local = await self.store.get_product_by_external_id(product_key)
        except LocalStoreError as e:
            logger.error("generate_mockups product=%s read failed: %s", product_key, e)
            return MockupGenerationResult(success=False, error=str(e), error_code=e.code)
        if local is None:
            return MockupGenerationResult(
                success=False,
                error=get_error("E-1003").format(product_id=product_key),
                error_code="E-1003",
            )

        try:
            detail = await self.client.get_sync_product(external_product_id)
        except FulfillmentError as e:
            logger.error("generate_mockups product=%s fetch failed: %s", product_key, e)
            return MockupGenerationResult(success=False, error=str(e), error_code=e.code)

        products: list[dict[str, Any]] = []
        color_by_variant: dict[int, str] = {}
        for color, variant in group_variants_by_color(detail.sync_variants).items():
            entry = build_mockup_product(variant)
            if entry is None:
                logger.info("generate_mockups product=%s color=%s has no print files", product_key, color)
                continue
            products.append(entry)
            color_by_variant[variant.product.variant_id] = color

        if not products:
            return MockupGenerationResult(
                success=False,
                error=get_error("E-1005").format(product_id=product_key),
                error_code="E-1005",
            )

        try:
            task_ids = await self.client.create_mockup_tasks(products)
        except FulfillmentError as e:
            logger.error("generate_mockups product=%s task creation failed: %s", product_key, e)
            return MockupGenerationResult(success=False, error=str(e), error_code=e.code)
        if not task_ids:
            return MockupGenerationResult(
                success=False,
                error=get_error("E-3004").format(product_id=product_key),
                error_code="E-3004",
            )

        logger.info(
            "generate_mockups product=%s colors=%d tasks=%s",
            product_key, len(color_by_variant), task_ids,
        )
        tasks = await self.poller.wait_for_tasks(task_ids)

        images = collect_images(tasks, color_by_variant, detail.sync_product.name)
        try:
            count = await self.store.add_product_images(local.id, images)
        except LocalStoreError as e:
            return MockupGenerationResult(success=False, error=str(e), error_code=e.code)

        logger.info(
            "generate_mockups product=%s completed=%d/%d images=%d",
            product_key, sum(t is not None for t in tasks), len(tasks), count,
        )
        return MockupGenerationResult(success=True, count=count)
