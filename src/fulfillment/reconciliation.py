"""Reconciliation of local order state against the provider's order state.

Planning is a pure function of (local snapshot, provider order) so every
rule can be tested without I/O. The engine around it loads the order,
fetches the provider view, and persists the minimal diff under the
per-order lock with an optimistic version check.

Status rules:
- Only ``fulfilled -> shipped`` and ``canceled -> cancelled`` are mapped.
  Every other provider status, including ``unknown``, changes nothing.
- Terminal local statuses (delivered, cancelled, refunded) are never
  overwritten by polling.
- Moves along pending -> paid -> processing -> shipped -> delivered are
  forward only. Side branches are reachable from any non-terminal status.
- Tracking is copied only from the most recent shipment, and only when it
  carries a tracking number.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from src.db.order_store import OrderStore
from src.errors.registry import get_error
from src.fulfillment.client import FulfillmentClient
from src.fulfillment.errors import (
    FulfillmentError,
    LocalStoreError,
    OrderNotFoundError,
    StaleOrderError,
)
from src.fulfillment.locks import KeyedLock
from src.fulfillment.models import (
    ConfirmOrderResult,
    LocalOrder,
    LocalOrderStatus,
    ProviderOrder,
    ProviderOrderStatus,
    SyncOrderResult,
)

logger = logging.getLogger(__name__)

PROVIDER_STATUS_MAP: dict[ProviderOrderStatus, LocalOrderStatus] = {
    ProviderOrderStatus.fulfilled: LocalOrderStatus.shipped,
    ProviderOrderStatus.canceled: LocalOrderStatus.cancelled,
}

TERMINAL_STATUSES = frozenset({
    LocalOrderStatus.delivered,
    LocalOrderStatus.cancelled,
    LocalOrderStatus.refunded,
})

SIDE_BRANCH_STATUSES = frozenset({
    LocalOrderStatus.cancelled,
    LocalOrderStatus.refunded,
    LocalOrderStatus.fulfillment_failed,
    LocalOrderStatus.fulfillment_canceled,
})

_PROGRESSION = (
    LocalOrderStatus.pending,
    LocalOrderStatus.paid,
    LocalOrderStatus.processing,
    LocalOrderStatus.shipped,
    LocalOrderStatus.delivered,
)

TRACKING_FIELDS = ("tracking_number", "tracking_url", "carrier")

# Re-read and re-plan this many times when another writer wins the race.
MAX_UPDATE_ATTEMPTS = 3


def is_terminal(status: LocalOrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: LocalOrderStatus, target: LocalOrderStatus) -> bool:
    """Whether polling reconciliation may move ``current`` to ``target``.

    Terminal statuses never move. Side branches are always reachable from a
    non-terminal status. Along the canonical progression only forward moves
    are allowed; an order in a non-terminal side branch (for example
    fulfillment_failed) may rejoin the progression.
    """
    if current == target or is_terminal(current):
        return False
    if target in SIDE_BRANCH_STATUSES:
        return True
    if current not in _PROGRESSION:
        return True
    return _PROGRESSION.index(target) > _PROGRESSION.index(current)


@dataclass(frozen=True)
class OrderChanges:
    """Minimal set of column changes for one order.

    Attributes:
        changes: Column -> new value; empty when the order is already in sync.
        notes: Why rules declined to act (for debug logs).
    """

    changes: dict[str, Any] = field(default_factory=dict)
    notes: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.changes

    def as_updates(self) -> dict[str, Any]:
        """Changes with enum values flattened, for results and logs."""
        return {key: getattr(value, "value", value) for key, value in self.changes.items()}


def diff_order(local: LocalOrder, proposed: dict[str, Any]) -> dict[str, Any]:
    """Drop proposed values the order already has (or that are empty)."""
    return {
        key: value
        for key, value in proposed.items()
        if value is not None and value != "" and getattr(local, key) != value
    }


def plan_reconciliation(local: LocalOrder, provider: ProviderOrder) -> OrderChanges:
    """Compute the changes that bring ``local`` in line with ``provider``.

    Args:
        local: Current local order snapshot.
        provider: Provider's view of the same order.

    Returns:
        OrderChanges with only the fields whose values differ.
    """
    proposed: dict[str, Any] = {}
    notes: list[str] = []

    target = PROVIDER_STATUS_MAP.get(provider.status)
    if is_terminal(local.status):
        notes.append(f"local status {local.status.value} is terminal")
    elif target is None:
        notes.append(f"provider status {provider.status.value} is not mapped")
    elif target != local.status:
        if can_transition(local.status, target):
            proposed["status"] = target
        else:
            notes.append(f"{local.status.value} -> {target.value} would move backwards")

    shipment = provider.latest_shipment
    if shipment is not None and shipment.has_tracking:
        for name in TRACKING_FIELDS:
            proposed[name] = getattr(shipment, name)
    elif shipment is not None:
        notes.append("latest shipment has no tracking number")

    return OrderChanges(changes=diff_order(local, proposed), notes=tuple(notes))


class ReconciliationEngine:
    """Pull-based order sync and draft confirmation.

    Shares its KeyedLock with the webhook dispatcher so a manual sync and a
    webhook for the same order never interleave.

    Example:
        engine = ReconciliationEngine(client, store)
        result = await engine.sync_order_status(order_id)
    """

    def __init__(
        self,
        client: FulfillmentClient,
        store: OrderStore,
        locks: KeyedLock | None = None,
        *,
        max_attempts: int = MAX_UPDATE_ATTEMPTS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.client = client
        self.store = store
        self.locks = locks or KeyedLock()
        self.max_attempts = max_attempts

    async def apply_changes(
        self,
        order_id: str,
        planner: Callable[[LocalOrder], dict[str, Any]],
    ) -> tuple[LocalOrder | None, dict[str, Any]]:
        """Read, plan and write one order under its lock.

        The planner is called with the freshest snapshot on every attempt,
        so a lost version race is resolved by re-planning rather than by
        overwriting the other writer.

        Args:
            order_id: Local order id.
            planner: Returns the minimal changes for a snapshot.

        Returns:
            (order after the write, applied changes). The order is None when
            it does not exist; changes are empty when nothing needed writing.

        Raises:
            StaleOrderError: Every attempt lost the race.
            LocalReadError: The store could not be read.
            LocalWriteError: The store rejected the write.
        """
        async with self.locks.hold(order_id):
            last_error: StaleOrderError | None = None
            for attempt in range(1, self.max_attempts + 1):
                current = await self.store.get_order(order_id)
                if current is None:
                    return None, {}
                changes = planner(current)
                if not changes:
                    logger.debug("apply_changes order=%s no changes", order_id)
                    return current, {}
                try:
                    updated = await self.store.update_order(order_id, changes, current.version)
                except StaleOrderError as e:
                    last_error = e
                    logger.info(
                        "apply_changes order=%s version conflict attempt=%d/%d",
                        order_id, attempt, self.max_attempts,
                    )
                    continue
                except OrderNotFoundError:
                    return None, {}
                return updated, changes
            raise last_error

    async def sync_order_status(self, local_order_id: str) -> SyncOrderResult:
        """Pull the provider order and reconcile the local order with it.

        Returns:
            SyncOrderResult; ``ok=False`` with an error code when the order
            is unknown, not yet submitted, or the provider call fails.
        """
        try:
            order = await self.store.get_order(local_order_id)
        except LocalStoreError as e:
            logger.error("sync_order_status order=%s read failed: %s", local_order_id, e)
            return SyncOrderResult(ok=False, error=str(e), error_code=e.code)
        if order is None:
            return SyncOrderResult(
                ok=False,
                error=get_error("E-1001").format(order_id=local_order_id),
                error_code="E-1001",
            )
        if not order.external_order_id:
            return SyncOrderResult(
                ok=False,
                error=get_error("E-1002").format(order_id=local_order_id),
                error_code="E-1002",
            )

        try:
            provider = await self.client.get_order(order.external_order_id)
        except FulfillmentError as e:
            logger.error("sync_order_status order=%s provider error: %s", local_order_id, e)
            return SyncOrderResult(ok=False, error=str(e), error_code=e.code)

        plans: list[OrderChanges] = []

        def planner(current: LocalOrder) -> dict[str, Any]:
            plan = plan_reconciliation(current, provider)
            plans.append(plan)
            return plan.changes

        try:
            updated, changes = await self.apply_changes(local_order_id, planner)
        except (StaleOrderError, LocalStoreError) as e:
            logger.error("sync_order_status order=%s update failed: %s", local_order_id, e)
            return SyncOrderResult(
                ok=False,
                provider_status=provider.status.value,
                error=str(e),
                error_code=e.code,
            )

        if updated is None:
            return SyncOrderResult(
                ok=False,
                error=get_error("E-1001").format(order_id=local_order_id),
                error_code="E-1001",
            )
        if not changes:
            notes = plans[-1].notes if plans else ()
            logger.debug(
                "sync_order_status order=%s provider_status=%s in sync %s",
                local_order_id, provider.status.value, list(notes),
            )
            return SyncOrderResult(ok=True, updated=False, provider_status=provider.status.value)

        updates = OrderChanges(changes=changes).as_updates()
        logger.info(
            "sync_order_status order=%s provider_status=%s updates=%s",
            local_order_id, provider.status.value, updates,
        )
        return SyncOrderResult(
            ok=True,
            updated=True,
            updates=updates,
            provider_status=provider.status.value,
        )

    async def confirm_order(self, external_order_id: str) -> ConfirmOrderResult:
        """Confirm a provider draft and advance the local order to processing.

        Only drafts are confirmed. A local write failure after the provider
        accepted the confirmation does not undo it; the result is ``ok`` with
        a warning and the next sync repairs the local copy.
        """
        try:
            provider = await self.client.get_order(external_order_id)
        except FulfillmentError as e:
            logger.error("confirm_order external=%s lookup failed: %s", external_order_id, e)
            return ConfirmOrderResult(ok=False, error=str(e), error_code=e.code)

        if provider.status is not ProviderOrderStatus.draft:
            logger.warning(
                "confirm_order external=%s refused, status=%s",
                external_order_id, provider.status.value,
            )
            return ConfirmOrderResult(
                ok=False,
                provider_status=provider.status.value,
                error=get_error("E-2001").format(
                    external_order_id=external_order_id, status=provider.status.value
                ),
                error_code="E-2001",
            )

        try:
            confirmed = await self.client.confirm_order(external_order_id)
        except FulfillmentError as e:
            logger.error("confirm_order external=%s failed: %s", external_order_id, e)
            return ConfirmOrderResult(
                ok=False,
                provider_status=provider.status.value,
                error=str(e),
                error_code=e.code,
            )
        logger.info(
            "confirm_order external=%s provider_status=%s",
            external_order_id, confirmed.status.value,
        )

        warning = await self._mark_processing(external_order_id, provider)
        return ConfirmOrderResult(
            ok=True,
            provider_status=confirmed.status.value,
            warning=warning,
        )

    async def _mark_processing(self, external_order_id: str, provider: ProviderOrder) -> str | None:
        """Advance the linked local order to processing; returns a warning on failure."""
        try:
            local = await self.store.find_by_external_order_id(str(provider.id))
            if local is None and str(provider.id) != str(external_order_id):
                local = await self.store.find_by_external_order_id(external_order_id)
            if local is None:
                logger.warning("confirm_order external=%s has no local order", external_order_id)
                return f"No local order is linked to provider order {provider.id}"

            def planner(current: LocalOrder) -> dict[str, Any]:
                if can_transition(current.status, LocalOrderStatus.processing):
                    return {"status": LocalOrderStatus.processing}
                return {}

            await self.apply_changes(local.id, planner)
        except (StaleOrderError, LocalStoreError) as e:
            logger.error(
                "confirm_order external=%s local update failed: %s", external_order_id, e
            )
            order_id = getattr(e, "order_id", external_order_id)
            reason = str(e.original) if isinstance(e, LocalStoreError) else e.message
            return get_error("E-4002").format(order_id=order_id, reason=reason)
        return None
