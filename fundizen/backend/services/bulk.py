from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from fundizen.core.api_client import extract_error_message
from fundizen.core.data_models import BulkActionResult, ItemOutcome

logger = logging.getLogger("fundizen.backend.bulk")

ItemOperation = Callable[[str], Awaitable[Any]]


class BulkActionCoordinator:
    """Fan one operation out over many ids and account for every item."""

    async def run(
        self,
        items: Iterable[Any],
        operation: ItemOperation,
        action: str = "bulk",
        context: Optional[Dict[str, Any]] = None,
    ) -> BulkActionResult:
        ids = [str(item) for item in items]
        outcomes: List[ItemOutcome] = []

        async def _one(item_id: str) -> None:
            try:
                result = await operation(item_id)
            except Exception as exc:  # noqa: BLE001 - one item never sinks the batch
                message = extract_error_message(exc)
                logger.warning("%s failed for %s: %s", action, item_id, message)
                outcomes.append(ItemOutcome(item_id=item_id, ok=False, error=message))
                return
            outcomes.append(ItemOutcome(item_id=item_id, ok=True, result=result))

        if ids:
            await asyncio.gather(*(_one(item_id) for item_id in ids))

        summary = BulkActionResult.from_outcomes(action, outcomes, context)
        logger.info(
            "%s processed %s items (%s succeeded, %s failed)",
            action,
            summary.totalProcessed,
            summary.successCount,
            summary.failureCount,
        )
        return summary
