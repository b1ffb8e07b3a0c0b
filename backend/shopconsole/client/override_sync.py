"""
Override Cache & Sync Engine.

Edits are written to a local pending-edit cache first and then pushed to
the server. The cache is a write-ahead buffer, not a second source of
truth:

    PENDING  - sent (or about to be), no answer yet
    FAILED   - the server write failed; kept for retry() or discard()

A confirmed edit is removed, never stored. Entries survive restarts, so an
edit the server never acknowledged keeps showing until it is synced or
discarded. Whenever a fresh server view is fetched it wins, except for
fields with an unconfirmed edit, which are overlaid and flagged.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from .debounce import Debouncer, PeriodicTask
from .errors import ClientError, OverrideSyncError, SessionClosed
from .session_manager import SessionManager
from .storage import ClientStorage

logger = logging.getLogger(__name__)


PENDING_EDITS_KEY = "pending_overrides"

# Dashboard field each override metric replaces
METRIC_FIELDS = {
    "orders_sold": "ordersSold",
    "total_sales": "totalSales",
    "profit_forecast": "profitForecast",
    "visitors": "visitors",
    "shop_followers": "shopFollowers",
    "shop_rating": "shopRating",
    "credit_score": "creditScore",
}


class EditState(str, Enum):
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class PendingEdit:
    subject_id: int
    metric_name: str
    value: float
    edited_by: Optional[int] = None
    previous_value: Optional[float] = None
    timestamp: float = field(default_factory=time.time)
    state: EditState = EditState.PENDING
    error: Optional[str] = None
    # Tells two edits of the same metric apart; results only apply to their own edit
    edit_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["state"] = self.state.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PendingEdit":
        return cls(
            subject_id=int(data["subject_id"]),
            metric_name=data["metric_name"],
            value=data["value"],
            edited_by=data.get("edited_by"),
            previous_value=data.get("previous_value"),
            timestamp=data.get("timestamp") or time.time(),
            state=EditState(data.get("state", EditState.PENDING.value)),
            error=data.get("error"),
            edit_id=data.get("edit_id") or uuid.uuid4().hex,
        )


class PendingEditCache:
    """Pending edits keyed by subject, then metric; persisted on every change."""

    def __init__(self, storage: ClientStorage, key: str = PENDING_EDITS_KEY):
        self.storage = storage
        self.key = key
        self._edits: dict[int, dict[str, PendingEdit]] = {}
        self.load()

    def load(self) -> None:
        self._edits = {}
        raw = self.storage.get(self.key) or {}
        for subject_key, metrics in raw.items():
            for metric_name, data in (metrics or {}).items():
                try:
                    edit = PendingEdit.from_dict(data)
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Dropping unreadable pending edit {subject_key}/{metric_name}: {e}")
                    continue
                self._edits.setdefault(edit.subject_id, {})[edit.metric_name] = edit
        if self._edits:
            logger.info(f"Restored {len(self)} unconfirmed override edit(s)")

    def _save(self) -> None:
        payload = {
            str(subject_id): {name: edit.to_dict() for name, edit in metrics.items()}
            for subject_id, metrics in self._edits.items()
            if metrics
        }
        if payload:
            self.storage.set(self.key, payload)
        else:
            self.storage.delete(self.key)

    def __len__(self) -> int:
        return sum(len(metrics) for metrics in self._edits.values())

    def get(self, subject_id: int, metric_name: str) -> Optional[PendingEdit]:
        return self._edits.get(subject_id, {}).get(metric_name)

    def for_subject(self, subject_id: int) -> list[PendingEdit]:
        return list(self._edits.get(subject_id, {}).values())

    def all(self) -> list[PendingEdit]:
        return [edit for metrics in self._edits.values() for edit in metrics.values()]

    def put(self, edit: PendingEdit) -> None:
        self._edits.setdefault(edit.subject_id, {})[edit.metric_name] = edit
        self._save()

    def _matches(self, subject_id: int, metric_name: str, edit_id: Optional[str]) -> Optional[PendingEdit]:
        edit = self.get(subject_id, metric_name)
        if edit is None or (edit_id is not None and edit.edit_id != edit_id):
            return None
        return edit

    def mark_failed(self, subject_id: int, metric_name: str, error: str, edit_id: Optional[str] = None) -> bool:
        """
        Flag the cached edit as failed.

        With edit_id, only that edit is touched; a newer edit of the same
        metric is left alone.
        """
        edit = self._matches(subject_id, metric_name, edit_id)
        if edit is None:
            return False
        edit.state = EditState.FAILED
        edit.error = error
        self._save()
        return True

    def remove(self, subject_id: int, metric_name: str, edit_id: Optional[str] = None) -> bool:
        if self._matches(subject_id, metric_name, edit_id) is None:
            return False
        metrics = self._edits[subject_id]
        del metrics[metric_name]
        if not metrics:
            del self._edits[subject_id]
        self._save()
        return True


@dataclass
class OverrideView:
    """A server snapshot and override list fetched together, plus local edits."""
    subject_id: int
    values: dict
    overrides: dict
    overridden_fields: list
    pending: dict = field(default_factory=dict)

    def value(self, metric_name: str) -> Any:
        return self.values.get(METRIC_FIELDS.get(metric_name, metric_name))

    def is_pending(self, metric_name: str) -> bool:
        return metric_name in self.pending


def _same_value(a, b) -> bool:
    try:
        return abs(float(a) - float(b)) < 0.005
    except (TypeError, ValueError):
        return False


class OverrideSyncEngine:
    """
    Optimistic override editing for the admin console.

    All server calls go through the SessionManager, so the admin's standard
    token is used even while impersonating. A logout cancels pending and
    periodic refreshes; calls already in flight finish without touching the
    cache or scheduling anything.
    """

    def __init__(
        self,
        session: SessionManager,
        cache: Optional[PendingEditCache] = None,
        on_view: Optional[Callable[[OverrideView], None]] = None,
    ):
        self.session = session
        self.cache = cache if cache is not None else PendingEditCache(session.storage)
        self.on_view = on_view
        self.views: dict[int, OverrideView] = {}
        self._alive = True
        # Bumped on logout; calls started earlier drop their results
        self._generation = 0
        self._refresh = Debouncer(
            session.config.refresh_debounce,
            self._refresh_subjects,
            is_alive=self._is_alive,
        )
        self._periodic: dict[int, PeriodicTask] = {}
        session.add_logout_listener(self._on_logout)

    def _is_alive(self) -> bool:
        return self._alive and self.session.alive

    def _is_current(self, generation: int) -> bool:
        return self._is_alive() and generation == self._generation

    def _on_logout(self) -> None:
        """Stop timers and detach in-flight work from the ended session."""
        self._generation += 1
        self._cancel_timers()
        self.views.clear()
        logger.info("Logged out, override refreshes stopped")

    def restore(self) -> list[PendingEdit]:
        """Reload unconfirmed edits left by a previous run."""
        self.cache.load()
        return self.cache.all()

    @staticmethod
    def _overrides_path(subject_id: int) -> str:
        return f"/api/admin/seller/{subject_id}/overrides"

    # =========================================================================
    # EDITS
    # =========================================================================

    async def edit(self, subject_id: int, metric_name: str, value) -> dict:
        """
        Record an edit locally, then write it to the server.

        Raises OverrideSyncError on failure; the edit stays cached as FAILED.
        """
        view = self.views.get(subject_id)
        editor = self.session.state.user or {}
        edit = PendingEdit(
            subject_id=subject_id,
            metric_name=metric_name,
            value=value,
            edited_by=editor.get("id"),
            previous_value=view.value(metric_name) if view else None,
        )
        self.cache.put(edit)
        return await self._push(edit)

    async def retry(self, subject_id: int, metric_name: str) -> dict:
        """Resend the cached value of a pending or failed edit."""
        edit = self.cache.get(subject_id, metric_name)
        if edit is None:
            raise OverrideSyncError("No pending edit to retry", subject_id=subject_id, metric_name=metric_name)
        edit.state = EditState.PENDING
        edit.error = None
        self.cache.put(edit)
        return await self._push(edit)

    def discard(self, subject_id: int, metric_name: str) -> bool:
        return self.cache.remove(subject_id, metric_name)

    async def _push(self, edit: PendingEdit) -> dict:
        generation = self._generation
        try:
            data = await self.session.request(
                "POST",
                self._overrides_path(edit.subject_id),
                json={"metricName": edit.metric_name, "value": edit.value},
            )
        except SessionClosed:
            raise
        except ClientError as e:
            if self._is_current(generation):
                self.cache.mark_failed(edit.subject_id, edit.metric_name, str(e), edit_id=edit.edit_id)
            logger.warning(f"Override write failed for {edit.subject_id}/{edit.metric_name}: {e}")
            raise OverrideSyncError(
                "Failed to save override",
                subject_id=edit.subject_id,
                metric_name=edit.metric_name,
                details=str(e),
            ) from e

        if self._is_current(generation):
            self.cache.remove(edit.subject_id, edit.metric_name, edit_id=edit.edit_id)
            self.schedule_refresh(edit.subject_id)
        return data

    async def reset(self, subject_id: int, metric_name: str) -> dict:
        """Delete the server override; the computed value shows again."""
        generation = self._generation
        data = await self.session.request("DELETE", f"{self._overrides_path(subject_id)}/{metric_name}")
        if self._is_current(generation):
            self.cache.remove(subject_id, metric_name)
            self.schedule_refresh(subject_id)
        return data

    async def clear(self, subject_id: int, metric_name: str) -> dict:
        """Zero the server override, keeping it in place."""
        generation = self._generation
        data = await self.session.request("PUT", f"{self._overrides_path(subject_id)}/{metric_name}/clear")
        if self._is_current(generation):
            self.cache.remove(subject_id, metric_name)
            self.schedule_refresh(subject_id)
        return data

    # =========================================================================
    # VIEWS
    # =========================================================================

    async def fetch_view(self, subject_id: int) -> OverrideView:
        """
        Fetch the reconciled dashboard and the override list together.

        Nothing is combined unless both calls succeed. Pending edits the
        server already reflects are purged as confirmed; the rest are
        overlaid on the server values.
        """
        generation = self._generation
        dashboard, overrides = await asyncio.gather(
            self.session.request("GET", f"/api/admin/seller/{subject_id}/dashboard"),
            self.session.request("GET", self._overrides_path(subject_id)),
        )
        if not self._is_current(generation):
            raise SessionClosed("Override sync engine was closed or logged out")

        values = dict(dashboard.get("metrics") or {})
        structured = overrides.get("structuredOverrides") or {}
        pending = {}

        for edit in self.cache.for_subject(subject_id):
            server = structured.get(edit.metric_name) or {}
            if edit.state is EditState.PENDING and server.get("hasOverride") and _same_value(server.get("value"), edit.value):
                self.cache.remove(subject_id, edit.metric_name, edit_id=edit.edit_id)
                continue
            field_name = METRIC_FIELDS.get(edit.metric_name)
            if field_name is not None:
                values[field_name] = edit.value
            pending[edit.metric_name] = edit

        view = OverrideView(
            subject_id=subject_id,
            values=values,
            overrides=structured,
            overridden_fields=list(dashboard.get("overriddenFields") or []),
            pending=pending,
        )
        self.views[subject_id] = view
        if self.on_view is not None:
            self.on_view(view)
        return view

    async def _refresh_subjects(self, subject_ids: set) -> None:
        for subject_id in subject_ids:
            try:
                await self.fetch_view(subject_id)
            except ClientError as e:
                logger.warning(f"Refresh of subject {subject_id} failed: {e}")

    def schedule_refresh(self, subject_id: int) -> None:
        """Debounced: rapid edits produce one refresh after a quiet period."""
        if self._is_alive():
            self._refresh.trigger(subject_id)

    async def wait_for_refresh(self) -> None:
        await self._refresh.wait()

    def start_periodic_refresh(self, subject_id: int) -> None:
        if subject_id in self._periodic:
            return

        async def _tick():
            await self._refresh_subjects({subject_id})

        task = PeriodicTask(
            self.session.config.periodic_refresh_interval,
            _tick,
            is_alive=self._is_alive,
            name=f"refresh-{subject_id}",
        )
        self._periodic[subject_id] = task
        task.start()

    def stop_periodic_refresh(self, subject_id: int) -> None:
        task = self._periodic.pop(subject_id, None)
        if task is not None:
            task.cancel()

    def _cancel_timers(self) -> None:
        self._refresh.cancel()
        for task in self._periodic.values():
            task.cancel()
        self._periodic.clear()

    def close(self) -> None:
        """Cancel timers; in-flight calls finish without touching the cache."""
        self._alive = False
        self._cancel_timers()
