"""
print_queue.py
Membership-card print queue: put a job on printer_queue and follow it until
the external print worker marks it completed, reports an error, or we give up.

    queue_id = enqueue(PrintRequest.for_member(member), actor)
    handle = watch(queue_id, member.id, actor.user_id, timeout_ms=25000,
                   on_completed=..., on_error=..., on_timeout=...)
    outcome = handle.result()      # Completed() | Failed(message) | TimedOut()

watch() never blocks: a daemon thread polls the row. The first terminal
condition wins and fires exactly one callback; after that (or after the
token is cancelled) nothing fires.
"""

from __future__ import annotations

import enum
import logging
import sqlite3
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Union

import db
from audit import log_admin_action
from config import settings
from errors import (
    AuthorizationDenied,
    MalformedRow,
    QueueFailed,
    QueueTimeout,
    RemoteMutationFailed,
    ValidationFailed,
)
from models import ActorContext, Member, PrintQueueEntry, PrintRequest
from privileges import can_access_dashboard, can_manage_members
from utils import normalize_ids

logger = logging.getLogger(__name__)


class WatchState(enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Completed:
    pass


@dataclass(frozen=True)
class Failed:
    message: str


@dataclass(frozen=True)
class TimedOut:
    pass


WatchResult = Union[Completed, Failed, TimedOut]


class CancellationToken:
    """Stops any watch it was handed to. Cancelled watches fire no callbacks."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*; True if cancelled meanwhile."""
        return self._event.wait(seconds)


def enqueue(request: PrintRequest, actor: ActorContext) -> int:
    """Insert a pending job and return its queue id."""
    if not can_manage_members(actor.privilege):
        raise AuthorizationDenied()

    queue_id = db.insert(
        """
        INSERT INTO printer_queue(firstname, lastname, email, ref, ref_invoker,
            is_voluntary, completed, error_msg, created_at)
        VALUES(?,?,?,?,?,?,0,NULL,?)
        """,
        (
            request.firstname,
            request.lastname,
            request.email,
            request.ref,
            actor.user_id,
            int(request.is_voluntary),
            db.now_iso(),
        ),
    )
    logger.info("Queued card print %s for %s (invoker %s)", queue_id, request.ref, actor.user_id)
    return queue_id


def fetch_entry(
    queue_id: Optional[int] = None,
    ref: Optional[str] = None,
    ref_invoker: Optional[str] = None,
) -> Optional[PrintQueueEntry]:
    """
    Look a job up by id, or (without an id) the newest job for (ref, ref_invoker).
    ref/ref_invoker also narrow an id lookup when given.
    """
    if queue_id is not None:
        sql = "SELECT * FROM printer_queue WHERE id = ?"
        params: list = [queue_id]
    elif ref is not None and ref_invoker is not None:
        sql = "SELECT * FROM printer_queue WHERE 1=1"
        params = []
    else:
        raise ValueError("fetch_entry needs a queue id or both ref and ref_invoker")

    if ref is not None:
        sql += " AND ref = ?"
        params.append(str(ref))
    if ref_invoker is not None:
        sql += " AND ref_invoker = ?"
        params.append(ref_invoker)
    sql += " ORDER BY id DESC LIMIT 1"

    row = db.fetch_one(sql, tuple(params))
    return PrintQueueEntry.from_row(row) if row else None


def list_queue(actor: ActorContext, limit: int = 100) -> list[PrintQueueEntry]:
    if not can_access_dashboard(actor.privilege):
        raise AuthorizationDenied()
    rows = db.fetch_all("SELECT * FROM printer_queue ORDER BY id DESC LIMIT ?", (int(limit),))
    return [PrintQueueEntry.from_row(r) for r in rows]


class QueueWatch:
    """
    Follows one printer_queue row. States: PENDING -> COMPLETED | FAILED |
    TIMED_OUT, or CANCELLED when the token is cancelled first.
    """

    def __init__(
        self,
        queue_id: Optional[int],
        ref: Optional[str],
        ref_invoker: Optional[str],
        timeout_ms: int,
        poll_interval_ms: int,
        on_completed: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        on_timeout: Optional[Callable[[], None]] = None,
        token: Optional[CancellationToken] = None,
        timeout_error_message: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if queue_id is None and (ref is None or ref_invoker is None):
            raise ValueError("watch needs a queue id or both ref and ref_invoker")
        self.queue_id = queue_id
        self.ref = ref
        self.ref_invoker = ref_invoker
        self.timeout_ms = timeout_ms
        self.poll_interval_ms = poll_interval_ms
        self.on_completed = on_completed
        self.on_error = on_error
        self.on_timeout = on_timeout
        self.token = token or CancellationToken()
        self.timeout_error_message = timeout_error_message
        self.clock = clock
        self.future: Future = Future()
        self._state = WatchState.PENDING
        self._lock = threading.Lock()
        self._last_seen_id: Optional[int] = queue_id
        self._thread = threading.Thread(
            target=self._run,
            name=f"print-watch-{queue_id if queue_id is not None else ref}",
            daemon=True,
        )

    @property
    def state(self) -> WatchState:
        return self._state

    def start(self) -> "QueueWatch":
        self._thread.start()
        return self

    def cancel(self) -> None:
        self.token.cancel()
        self._mark_cancelled()

    def result(self, timeout: Optional[float] = None) -> WatchResult:
        """Block until terminal. Raises CancelledError if the watch was cancelled."""
        return self.future.result(timeout)

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)

    def _mark_cancelled(self) -> None:
        with self._lock:
            if self._state is not WatchState.PENDING:
                return
            self._state = WatchState.CANCELLED
            self.future.cancel()
        logger.debug("Print watch %s cancelled", self.queue_id)

    def _poll(self) -> Optional[WatchResult]:
        try:
            entry = fetch_entry(self.queue_id, self.ref, self.ref_invoker)
        except (sqlite3.Error, MalformedRow) as exc:
            # transient; keep polling until the deadline
            logger.warning("Polling print job %s failed: %s", self.queue_id, exc)
            return None
        if entry is None:
            return None
        self._last_seen_id = entry.id
        if entry.error_msg:
            if entry.completed:
                logger.warning("Print job %s is both completed and failed; reporting the error", entry.id)
            return Failed(entry.error_msg)
        if entry.completed:
            return Completed()
        return None

    def _mark_timeout_on_row(self) -> None:
        if not self.timeout_error_message or self._last_seen_id is None:
            return
        try:
            db.mutate(
                """
                UPDATE printer_queue SET error_msg = ?
                WHERE id = ? AND completed = 0 AND error_msg IS NULL
                """,
                (self.timeout_error_message, self._last_seen_id),
            )
        except RemoteMutationFailed as exc:
            logger.warning("Could not mark print job %s as timed out: %s", self._last_seen_id, exc)

    def _finish(self, outcome: WatchResult) -> None:
        if isinstance(outcome, Completed):
            state, callback, args = WatchState.COMPLETED, self.on_completed, ()
        elif isinstance(outcome, Failed):
            state, callback, args = WatchState.FAILED, self.on_error, (outcome.message,)
        else:
            state, callback, args = WatchState.TIMED_OUT, self.on_timeout, ()

        with self._lock:
            if self._state is not WatchState.PENDING:
                return
            if self.token.cancelled:
                self._state = WatchState.CANCELLED
                self.future.cancel()
                return
            self._state = state

        logger.info("Print job %s finished: %s", self._last_seen_id, state.value)
        if callback is not None:
            try:
                callback(*args)
            except Exception:
                logger.exception("Print watch callback for job %s raised", self._last_seen_id)
        self.future.set_result(outcome)

    def _run(self) -> None:
        deadline = self.clock() + self.timeout_ms / 1000.0
        interval = self.poll_interval_ms / 1000.0
        while True:
            if self.token.cancelled:
                self._mark_cancelled()
                return
            outcome = self._poll()
            if outcome is not None:
                self._finish(outcome)
                return
            remaining = deadline - self.clock()
            if remaining <= 0:
                if self.token.cancelled:
                    self._mark_cancelled()
                else:
                    self._mark_timeout_on_row()
                    self._finish(TimedOut())
                return
            if self.token.wait(min(interval, remaining)):
                self._mark_cancelled()
                return


def watch(
    queue_id: Optional[int],
    ref: Optional[str] = None,
    ref_invoker: Optional[str] = None,
    timeout_ms: Optional[int] = None,
    on_completed: Optional[Callable[[], None]] = None,
    on_error: Optional[Callable[[str], None]] = None,
    on_timeout: Optional[Callable[[], None]] = None,
    poll_interval_ms: Optional[int] = None,
    token: Optional[CancellationToken] = None,
    timeout_error_message: Optional[str] = None,
) -> QueueWatch:
    """Start following a job; returns at once with a running QueueWatch."""
    return QueueWatch(
        queue_id=queue_id,
        ref=ref,
        ref_invoker=ref_invoker,
        timeout_ms=settings.print_timeout_ms if timeout_ms is None else timeout_ms,
        poll_interval_ms=settings.print_poll_interval_ms if poll_interval_ms is None else poll_interval_ms,
        on_completed=on_completed,
        on_error=on_error,
        on_timeout=on_timeout,
        token=token,
        timeout_error_message=timeout_error_message,
    ).start()


def wait_for_print(handle: QueueWatch) -> None:
    """Blocks on a watch; raises QueueFailed / QueueTimeout for the bad outcomes."""
    outcome = handle.result()
    if isinstance(outcome, Failed):
        raise QueueFailed(outcome.message)
    if isinstance(outcome, TimedOut):
        raise QueueTimeout()


@dataclass
class PrintBatchResult:
    requested: list[str]
    queued: list[tuple[int, str]] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def status(self) -> str:
        if not self.failed:
            return "ok"
        return "partial" if self.queued else "error"


def print_member_cards(actor: ActorContext, member_ids: Iterable[str] | str) -> PrintBatchResult:
    """
    Queue a card for each member. Unknown and banned members are reported as
    failures; failures are written to the audit log.
    """
    if not can_manage_members(actor.privilege):
        raise AuthorizationDenied()
    ids = normalize_ids(member_ids)
    if not ids:
        raise ValidationFailed("Medlems-ID mangler.")

    rows = db.fetch_all(
        f"SELECT * FROM members WHERE id IN ({db.placeholders(ids)})",
        tuple(ids),
    )
    by_id = {m.id: m for m in (Member.from_row(r) for r in rows)}

    result = PrintBatchResult(requested=ids)
    invalid: list[str] = []
    for member_id in ids:
        member = by_id.get(member_id)
        if member is None:
            invalid.append(member_id)
            result.failed[member_id] = "Medlem ikke funnet."
            continue
        if member.is_banned:
            result.failed[member_id] = "Kontoen kan ikke brukes for utskrift."
            continue
        try:
            queue_id = enqueue(PrintRequest.for_member(member), actor)
        except RemoteMutationFailed as exc:
            result.failed[member_id] = exc.message
            continue
        result.queued.append((queue_id, member_id))

    if result.failed:
        log_admin_action(
            actor.user_id, "member.card_print.enqueue", "members",
            ids[0] if len(ids) == 1 else None,
            status=result.status,
            error_message="Kunne ikke legge til i utskriftskø.",
            details={
                "requested_member_ids": ids,
                "queued_member_ids": [member_id for _, member_id in result.queued],
                "invalid_member_ids": invalid,
                "failed": result.failed,
            },
        )
    return result
