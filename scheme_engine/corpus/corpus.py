"""Versioned scheme corpus with single-writer delta application."""

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, Dict, List, Optional, Sequence, Tuple

from scheme_engine.domain.models import (
    ChangeEvent,
    ChangeKind,
    Delta,
    DeltaOp,
    DeltaOpType,
    Scheme,
)
from scheme_engine.domain.validation import check_scheme
from scheme_engine.logging import get_logger
from scheme_engine.utils.timestamps import utc_now

from .channel import ChangeEventChannel
from .exceptions import ConflictError, HistoryUnavailableError, ValidationError
from .snapshot import CorpusSnapshot
from .storage import CorpusStore

logger = get_logger(__name__, component="corpus")

DEFAULT_HISTORY_LIMIT = 1000


@dataclass(frozen=True)
class CorpusStatus:
    """Freshness of the corpus as seen by callers of matching."""

    version: int
    scheme_count: int
    is_stale: bool
    stale_reason: Optional[str] = None
    stale_since: Optional[datetime] = None
    last_refreshed_at: Optional[datetime] = None


@dataclass
class _Plan:
    """Effective changes of one delta against one snapshot."""

    schemes: Dict[str, Scheme]
    upserts: List[Scheme]
    removals: List[str]
    changes: List[Tuple[str, ChangeKind, Optional[str], Optional[str], Optional[str]]]


class SchemeCorpus:
    """Owned, versioned store of scheme records.

    Readers call ``current_snapshot()`` and never block; the reference swap is
    atomic. Writers go through ``apply_delta``, which is serialized by a lock
    and publishes ChangeEvents to every subscribed channel in version order.

    Example:
        >>> corpus = SchemeCorpus()
        >>> version, events = corpus.apply_delta(delta)
        >>> snapshot = corpus.current_snapshot()
    """

    def __init__(self, store: Optional[CorpusStore] = None, history_limit: int = DEFAULT_HISTORY_LIMIT):
        if history_limit < 1:
            raise ValueError("history_limit must be at least 1")

        self._store = store
        self._history_limit = history_limit
        self._lock = threading.Lock()
        self._channels: List[ChangeEventChannel] = []
        self._history: Deque[Tuple[int, List[ChangeEvent]]] = deque()
        self._history_floor = 0
        self._snapshot = CorpusSnapshot(0)

        self._stale_reason: Optional[str] = None
        self._stale_since: Optional[datetime] = None
        self._last_refreshed_at: Optional[datetime] = None

        if store is not None:
            self._reload_from_store()

    def current_snapshot(self) -> CorpusSnapshot:
        """Latest snapshot. Never blocks."""
        return self._snapshot

    @property
    def version(self) -> int:
        return self._snapshot.version

    def subscribe(self) -> ChangeEventChannel:
        """Create a channel that receives every ChangeEvent from now on."""
        channel = ChangeEventChannel()
        with self._lock:
            self._channels.append(channel)
        return channel

    def apply_delta(self, delta: Delta) -> Tuple[int, List[ChangeEvent]]:
        """Validate and apply a delta atomically.

        Ops whose effect is already present are no-ops, so re-applying a delta
        changes nothing. A delta with no effective op returns the current
        version and no events.

        Returns:
            Tuple of (resulting version, ChangeEvents produced)

        Raises:
            ValidationError: If any op is malformed; nothing is applied
            ConflictError: If the store keeps reporting a concurrent writer
        """
        with self._lock:
            snapshot = self._snapshot
            plan = self._plan(delta, snapshot)

            if not plan.changes:
                logger.debug(
                    "Delta had no effect",
                    extra={"event": "corpus.delta.noop", "version": snapshot.version, "ops": len(delta)},
                )
                return snapshot.version, []

            if self._store is not None:
                try:
                    self._store_commit(snapshot.version, plan)
                except ConflictError:
                    logger.warning(
                        "Corpus store advanced concurrently; reloading and retrying",
                        extra={"event": "corpus.delta.conflict", "version": snapshot.version},
                    )
                    self._reload_from_store()
                    snapshot = self._snapshot
                    plan = self._plan(delta, snapshot)
                    if not plan.changes:
                        return snapshot.version, []
                    self._store_commit(snapshot.version, plan)

            new_version = snapshot.version + 1
            events = _events_for(plan, new_version)

            self._snapshot = CorpusSnapshot(new_version, plan.schemes)
            self._remember(new_version, events)
            for channel in self._channels:
                channel.publish(events)

        logger.info(
            f"Applied delta: version {snapshot.version} -> {new_version} ({len(events)} changes)",
            extra={
                "event": "corpus.delta.applied",
                "version": new_version,
                "added": sum(1 for e in events if e.kind is ChangeKind.ADDED),
                "updated": sum(1 for e in events if e.kind is ChangeKind.UPDATED),
                "removed": sum(1 for e in events if e.kind is ChangeKind.REMOVED),
            },
        )
        return new_version, events

    def get_since(self, version: int) -> Delta:
        """Net changes between ``version`` and the current version, folded per scheme.

        Raises:
            HistoryUnavailableError: If ``version`` is newer than the corpus or
                older than the retained history
        """
        with self._lock:
            snapshot = self._snapshot
            history = list(self._history)
            floor = self._history_floor

        if version > snapshot.version or version < floor:
            raise HistoryUnavailableError(version, floor, snapshot.version)

        # scheme id -> (existed at `version`, hash at `version`)
        origin: Dict[str, Tuple[bool, Optional[str]]] = {}
        for event_version, events in history:
            if event_version <= version:
                continue
            for event in events:
                if event.scheme_id not in origin:
                    origin[event.scheme_id] = (
                        event.kind is not ChangeKind.ADDED,
                        event.previous_hash,
                    )

        ops: List[DeltaOp] = []
        for scheme_id, (existed, previous_hash) in origin.items():
            current = snapshot.get(scheme_id)
            if current is None:
                if existed:
                    ops.append(
                        DeltaOp(op=DeltaOpType.REMOVE, scheme_id=scheme_id, content_hash=previous_hash)
                    )
            elif not existed:
                ops.append(DeltaOp(op=DeltaOpType.ADD, scheme_id=scheme_id, payload=current))
            elif current.content_hash != previous_hash:
                ops.append(DeltaOp(op=DeltaOpType.UPDATE, scheme_id=scheme_id, payload=current))

        return Delta(ops=tuple(ops), base_version=version)

    @property
    def status(self) -> CorpusStatus:
        snapshot = self._snapshot
        return CorpusStatus(
            version=snapshot.version,
            scheme_count=len(snapshot),
            is_stale=self._stale_reason is not None,
            stale_reason=self._stale_reason,
            stale_since=self._stale_since,
            last_refreshed_at=self._last_refreshed_at,
        )

    @property
    def is_stale(self) -> bool:
        return self._stale_reason is not None

    def mark_stale(self, reason: str) -> None:
        """Flag the corpus as stale. Matching keeps serving the last snapshot."""
        if self._stale_reason is None:
            self._stale_since = utc_now()
        self._stale_reason = reason
        logger.warning(
            f"Corpus marked stale: {reason}",
            extra={"event": "corpus.stale", "version": self.version, "reason": reason},
        )

    def mark_fresh(self) -> None:
        """Clear the stale flag after a completed refresh."""
        if self._stale_reason is not None:
            logger.info(
                "Corpus refreshed; stale flag cleared",
                extra={"event": "corpus.fresh", "version": self.version},
            )
        self._stale_reason = None
        self._stale_since = None
        self._last_refreshed_at = utc_now()

    def _plan(self, delta: Delta, snapshot: CorpusSnapshot) -> _Plan:
        schemes = dict(snapshot.schemes)
        plan = _Plan(schemes=schemes, upserts=[], removals=[], changes=[])
        seen = set()

        for op in delta.ops:
            field = f"schemes[{op.scheme_id}]"

            if op.scheme_id in seen:
                raise ValidationError(f"{field}: duplicate scheme id in delta", field=field)
            seen.add(op.scheme_id)

            existing = schemes.get(op.scheme_id)

            if op.op is DeltaOpType.REMOVE:
                if existing is None:
                    continue
                if op.expected_hash and op.expected_hash != existing.content_hash:
                    raise ValidationError(
                        f"{field}.content_hash: remove expected {op.expected_hash}, "
                        f"corpus has {existing.content_hash}",
                        field=f"{field}.content_hash",
                    )
                del schemes[op.scheme_id]
                plan.removals.append(op.scheme_id)
                plan.changes.append(
                    (op.scheme_id, ChangeKind.REMOVED, existing.content_hash, None, existing.category)
                )
                continue

            scheme = self._validated_payload(op, field)

            if existing is not None and existing.content_hash == scheme.content_hash:
                continue

            if op.op is DeltaOpType.ADD and existing is not None:
                raise ValidationError(
                    f"{field}: add of an existing scheme with different content",
                    field=field,
                )
            if op.op is DeltaOpType.UPDATE and existing is None:
                raise ValidationError(f"{field}: update of unknown scheme id", field=field)

            schemes[op.scheme_id] = scheme
            plan.upserts.append(scheme)
            plan.changes.append(
                (
                    op.scheme_id,
                    ChangeKind.ADDED if existing is None else ChangeKind.UPDATED,
                    existing.content_hash if existing is not None else None,
                    scheme.content_hash,
                    scheme.category,
                )
            )

        return plan

    @staticmethod
    def _validated_payload(op: DeltaOp, field: str) -> Scheme:
        payload = op.payload
        if payload.id != op.scheme_id:
            raise ValidationError(
                f"{field}.id: payload id '{payload.id}' does not match operation id",
                field=f"{field}.id",
            )

        problems = [f"{field}.{problem}" for problem in check_scheme(payload)]
        if problems:
            raise ValidationError(problems[0], field=problems[0].split(":", 1)[0], errors=problems)

        scheme = payload.with_computed_hash()
        if op.content_hash and op.content_hash != scheme.content_hash:
            raise ValidationError(
                f"{field}.content_hash: declared {op.content_hash} does not match "
                f"computed {scheme.content_hash}",
                field=f"{field}.content_hash",
            )
        return scheme

    def _store_commit(self, expected_version: int, plan: _Plan) -> None:
        new_version = expected_version + 1
        self._store.commit(
            expected_version, new_version, plan.upserts, plan.removals, _events_for(plan, new_version)
        )

    def _remember(self, version: int, events: Sequence[ChangeEvent]) -> None:
        self._history.append((version, list(events)))
        while len(self._history) > self._history_limit:
            evicted_version, _ = self._history.popleft()
            self._history_floor = evicted_version

    def _reload_from_store(self) -> None:
        stored = self._store.load(self._history_limit)
        schemes = {}
        for scheme in stored.schemes:
            problems = check_scheme(scheme)
            if problems:
                # Kept in the snapshot; matching skips it as malformed
                logger.warning(
                    f"Stored scheme {scheme.id} is malformed: {problems[0]}",
                    extra={"event": "corpus.store.malformed", "scheme_id": scheme.id},
                )
            schemes[scheme.id] = scheme

        by_version: Dict[int, List[ChangeEvent]] = {}
        for event in stored.events:
            by_version.setdefault(event.version, []).append(event)

        self._history = deque(sorted(by_version.items()))
        self._history_floor = min(by_version) - 1 if by_version else stored.version
        self._snapshot = CorpusSnapshot(stored.version, schemes)


def _events_for(plan: _Plan, version: int) -> List[ChangeEvent]:
    return [
        ChangeEvent(
            scheme_id=scheme_id,
            kind=kind,
            version=version,
            previous_hash=previous_hash,
            new_hash=new_hash,
            category=category,
        )
        for scheme_id, kind, previous_hash, new_hash, category in plan.changes
    ]
