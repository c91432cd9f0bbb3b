"""
Risk Sync Scheduler.

Keeps the risk overlay of a displayed entity set fresh:
- Interval polling per entity set (default 20s)
- Early reconciliation when a push notification names a visible id
- At most one in-flight reconciliation per entity set
- Overlay-only merge that never touches a field the user is editing

The scheduler is generic over where scores come from: the ledger when it
runs inside the service, or the ``/api/risk/scores`` endpoint over HTTP
when it runs in a client.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Protocol

import httpx

from revcycle.schemas import RiskSnapshot
from revcycle.utils.logging import get_logger

logger = get_logger(__name__)

OVERLAY_FIELDS = ("risk_score", "risk_explanation", "risk_factors", "risk_tier")


class RiskScoreSource(Protocol):
    """Read-only "current scores for these ids" query."""

    async def fetch(self, entity_ids: list[str]) -> list[RiskSnapshot]:
        ...


class LedgerRiskScoreSource:
    """Reads snapshots straight from a claim ledger."""

    def __init__(self, ledger: Any):
        self._ledger = ledger

    async def fetch(self, entity_ids: list[str]) -> list[RiskSnapshot]:
        return self._ledger.current_scores(entity_ids)


class HttpRiskScoreSource:
    """Polls the service's risk score endpoint."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout_seconds: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout_seconds
        )
        self._owns_client = http_client is None

    async def fetch(self, entity_ids: list[str]) -> list[RiskSnapshot]:
        if not entity_ids:
            return []
        response = await self._client.get(
            "/api/risk/scores", params={"ids": ",".join(entity_ids)}
        )
        response.raise_for_status()
        return [RiskSnapshot.model_validate(item) for item in response.json()]

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


@dataclass
class EntitySet:
    """One screen's worth of entities kept in sync."""

    key: str
    ids: list[str]
    interval_seconds: float
    rows: dict[str, dict[str, Any]] = field(default_factory=dict)
    editing: dict[str, set[str]] = field(default_factory=dict)
    wake: asyncio.Event = field(default_factory=asyncio.Event)
    in_flight: Optional[asyncio.Task] = None
    poller: Optional[asyncio.Task] = None
    last_synced_at: Optional[datetime] = None
    last_error: Optional[str] = None
    sync_count: int = 0
    error_count: int = 0


def merge_snapshot(
    row: dict[str, Any],
    snapshot: RiskSnapshot,
    editing: Iterable[str] = (),
) -> bool:
    """
    Overlay a snapshot onto a local row.

    Only risk fields are written, fields being edited are left alone and
    a snapshot older than what the row already shows is ignored.
    Returns whether anything changed.
    """
    seen_version = row.get("risk_version")
    if seen_version is not None and snapshot.version < seen_version:
        return False

    incoming = {
        "risk_score": snapshot.score,
        "risk_explanation": snapshot.explanation,
        "risk_factors": [f.model_dump(mode="json") for f in snapshot.factors],
        "risk_tier": snapshot.tier.value if snapshot.tier else None,
    }
    skipped = set(editing)
    changed = False
    for name in OVERLAY_FIELDS:
        if name in skipped:
            continue
        if row.get(name) != incoming[name]:
            row[name] = incoming[name]
            changed = True
    row["risk_version"] = snapshot.version
    return changed


class RiskSyncScheduler:
    """
    Periodic, single-flight reconciliation of risk overlays.

    Usage:
        scheduler = RiskSyncScheduler(LedgerRiskScoreSource(ledger))
        scheduler.register("claims-page", claim_ids, rows=claim_rows)
        await scheduler.start()
        ...
        scheduler.notify(["claim-id"])   # push arrived, reconcile early
        ...
        await scheduler.stop()
    """

    def __init__(self, source: RiskScoreSource, default_interval_seconds: float = 20.0):
        self._source = source
        self._default_interval = default_interval_seconds
        self._sets: dict[str, EntitySet] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Entity Sets
    # =========================================================================

    def register(
        self,
        key: str,
        entity_ids: Iterable[str],
        interval_seconds: Optional[float] = None,
        rows: Optional[dict[str, dict[str, Any]]] = None,
    ) -> EntitySet:
        """Track an entity set; replaces an existing set with the same key."""
        if key in self._sets:
            self.unregister(key)

        interval = interval_seconds if interval_seconds is not None else self._default_interval
        if interval <= 0:
            raise ValueError("interval_seconds must be positive")

        ids = list(dict.fromkeys(entity_ids))
        entity_set = EntitySet(
            key=key,
            ids=ids,
            interval_seconds=interval,
            rows=rows if rows is not None else {},
        )
        for entity_id in ids:
            entity_set.rows.setdefault(entity_id, {"id": entity_id})
        self._sets[key] = entity_set

        if self._running:
            entity_set.poller = asyncio.create_task(self._poll(entity_set))
        logger.debug(f"Risk sync set {key} registered: {len(ids)} ids every {interval}s")
        return entity_set

    def unregister(self, key: str) -> None:
        entity_set = self._sets.pop(key, None)
        if entity_set and entity_set.poller:
            entity_set.poller.cancel()

    def set_ids(self, key: str, entity_ids: Iterable[str]) -> None:
        """Change which ids are visible, e.g. after paging."""
        entity_set = self._get(key)
        entity_set.ids = list(dict.fromkeys(entity_ids))
        for entity_id in entity_set.ids:
            entity_set.rows.setdefault(entity_id, {"id": entity_id})

    def view(self, key: str) -> dict[str, dict[str, Any]]:
        return self._get(key).rows

    def get_set(self, key: str) -> EntitySet:
        return self._get(key)

    def _get(self, key: str) -> EntitySet:
        if key not in self._sets:
            raise KeyError(f"Unknown entity set: {key}")
        return self._sets[key]

    # =========================================================================
    # Edit Tracking
    # =========================================================================

    def mark_editing(self, key: str, entity_id: str, field_name: str) -> None:
        self._get(key).editing.setdefault(entity_id, set()).add(field_name)

    def clear_editing(self, key: str, entity_id: str, field_name: Optional[str] = None) -> None:
        editing = self._get(key).editing
        if field_name is None:
            editing.pop(entity_id, None)
            return
        fields = editing.get(entity_id)
        if fields is not None:
            fields.discard(field_name)
            if not fields:
                del editing[entity_id]

    # =========================================================================
    # Reconciliation
    # =========================================================================

    async def reconcile(self, key: str) -> int:
        """
        Reconcile one entity set now.

        Joins the in-flight reconciliation if there is one. Returns the
        number of rows whose overlay changed.
        """
        entity_set = self._get(key)
        if entity_set.in_flight is None or entity_set.in_flight.done():
            entity_set.in_flight = asyncio.create_task(self._reconcile(entity_set))
        return await asyncio.shield(entity_set.in_flight)

    async def _reconcile(self, entity_set: EntitySet) -> int:
        ids = list(entity_set.ids)
        try:
            snapshots = await self._source.fetch(ids)
        except Exception as e:
            entity_set.error_count += 1
            entity_set.last_error = str(e)
            logger.warning(f"Risk sync for {entity_set.key} failed, keeping current view: {e}")
            return 0

        changed = 0
        visible = set(entity_set.ids)
        for snapshot in snapshots:
            if snapshot.entity_id not in visible:
                continue
            row = entity_set.rows.setdefault(snapshot.entity_id, {"id": snapshot.entity_id})
            editing = entity_set.editing.get(snapshot.entity_id, ())
            if merge_snapshot(row, snapshot, editing):
                changed += 1

        entity_set.sync_count += 1
        entity_set.last_error = None
        entity_set.last_synced_at = datetime.now(timezone.utc)
        if changed:
            logger.info(f"Risk sync for {entity_set.key}: {changed} row(s) updated")
        return changed

    def notify(self, entity_ids: Iterable[str]) -> list[str]:
        """Wake every entity set showing one of ``entity_ids``."""
        ids = set(entity_ids)
        woken = []
        for entity_set in self._sets.values():
            if ids.intersection(entity_set.ids):
                entity_set.wake.set()
                woken.append(entity_set.key)
        return woken

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start polling every registered set. Idempotent."""
        if self._running:
            return
        self._running = True
        for entity_set in self._sets.values():
            entity_set.wake.clear()
            entity_set.poller = asyncio.create_task(self._poll(entity_set))
        logger.info(f"Risk sync started for {len(self._sets)} set(s)")

    async def stop(self) -> None:
        """Stop polling and wait for pollers to exit. Can be started again."""
        if not self._running:
            return
        self._running = False
        tasks = []
        for entity_set in self._sets.values():
            for task in (entity_set.poller, entity_set.in_flight):
                if task is not None and not task.done():
                    task.cancel()
                    tasks.append(task)
            entity_set.poller = None
            entity_set.in_flight = None
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Risk sync stopped")

    async def _poll(self, entity_set: EntitySet) -> None:
        while self._running:
            await self.reconcile(entity_set.key)
            try:
                await asyncio.wait_for(
                    entity_set.wake.wait(), timeout=entity_set.interval_seconds
                )
            except asyncio.TimeoutError:
                pass
            entity_set.wake.clear()
