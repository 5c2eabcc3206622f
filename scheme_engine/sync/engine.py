"""Delta reconciliation between the local corpus and a remote authority.

One cycle:
1. Fetch the authority manifest (with retry)
2. Compare declared hashes with local hashes to build the work list
3. Fetch only new or changed records, verify each hash, checkpoint each one
4. Apply the assembled delta to the corpus (the only time its lock is held)
"""

import threading
import time
from typing import Callable, Dict, List, Optional, TypeVar

from scheme_engine.config.models import SyncSettings
from scheme_engine.corpus import ConflictError, SchemeCorpus, ValidationError
from scheme_engine.domain.models import Delta, DeltaOp, DeltaOpType, Manifest, Scheme
from scheme_engine.logging import get_logger
from scheme_engine.persistence import SyncStatusRepository, get_session
from scheme_engine.utils.hashing import fingerprint_entries
from scheme_engine.utils.timestamps import utc_now

from .authority import SchemeAuthority
from .checkpoint import CheckpointStore, InMemoryCheckpointStore
from .exceptions import AuthorityError, IntegrityError, NetworkError, SyncCancelled
from .models import SyncOutcome, SyncResult

logger = get_logger(__name__, component="sync")

T = TypeVar("T")

_REMOVED_MARKER = "removed"


class SyncEngine:
    """Reconciles a SchemeCorpus with a SchemeAuthority.

    The sync engine is the only writer of the corpus. Network I/O happens
    outside the corpus write lock.

    Args:
        corpus: Corpus to keep up to date
        authority: Remote source of truth
        settings: Retry policy (attempts and backoff)
        checkpoints: Where confirmed records are kept between attempts
        persist_status: Record SyncStatus rows (requires init_database())
    """

    def __init__(
        self,
        corpus: SchemeCorpus,
        authority: SchemeAuthority,
        settings: Optional[SyncSettings] = None,
        checkpoints: Optional[CheckpointStore] = None,
        persist_status: bool = False,
    ):
        self.corpus = corpus
        self.authority = authority
        self.settings = settings or SyncSettings()
        self.checkpoints = checkpoints or InMemoryCheckpointStore()
        self.persist_status = persist_status
        self._authority_version: Optional[int] = None

        if persist_status:
            with get_session() as session:
                status = SyncStatusRepository(session).get(authority.name)
            if status is not None:
                self._authority_version = status.authority_version

    @property
    def authority_version(self) -> Optional[int]:
        """Manifest version of the last fully reconciled cycle."""
        return self._authority_version

    def reconcile(self, cancel_event: Optional[threading.Event] = None) -> SyncResult:
        """Run one reconciliation cycle.

        Never raises for network, authority, integrity or store-conflict
        problems; they are reported in the returned SyncResult.

        Args:
            cancel_event: Set to stop between record fetches or during backoff

        Returns:
            SyncResult describing the cycle
        """
        cancel = cancel_event or threading.Event()
        started = time.monotonic()

        logger.info(
            f"Sync cycle started against {self.authority.name}",
            extra={
                "event": "sync.cycle.started",
                "corpus_version": self.corpus.version,
                "since_version": self._authority_version,
            },
        )

        try:
            result = self._run_cycle(cancel)
        except SyncCancelled as e:
            result = SyncResult(
                outcome=SyncOutcome.CANCELLED,
                corpus_version=self.corpus.version,
                error_message=str(e),
            )
            logger.info(
                "Sync cycle cancelled; checkpoint kept",
                extra={"event": "sync.cycle.cancelled", "corpus_version": result.corpus_version},
            )

        result.duration_seconds = time.monotonic() - started
        logger.info(
            f"Sync cycle finished: {result.outcome.value}",
            extra={
                "event": "sync.cycle.completed",
                "outcome": result.outcome.value,
                "corpus_version": result.corpus_version,
                "fetched_count": result.fetched_count,
                "resumed_count": result.resumed_count,
                "removed_count": result.removed_count,
                "integrity_failures": len(result.integrity_failures),
                "dropped": len(result.dropped),
                "duration_ms": int(result.duration_seconds * 1000),
            },
        )
        return result

    def _run_cycle(self, cancel: threading.Event) -> SyncResult:
        self._check_cancel(cancel)
        snapshot = self.corpus.current_snapshot()

        try:
            manifest = self._with_retry(
                lambda: self.authority.fetch_manifest(self._authority_version), "manifest", cancel
            )
        except (NetworkError, AuthorityError) as e:
            return self._go_stale(f"Manifest fetch failed: {e}")

        local = snapshot.hashes()
        live = manifest.live_hashes()
        to_fetch = sorted(scheme_id for scheme_id, digest in live.items() if local.get(scheme_id) != digest)
        removals = self._removals(manifest, local, live)

        fingerprint = fingerprint_entries(
            [(scheme_id, live[scheme_id]) for scheme_id in to_fetch]
            + [(scheme_id, _REMOVED_MARKER) for scheme_id in removals]
        )
        confirmed = {
            scheme_id: scheme
            for scheme_id, scheme in self.checkpoints.load(fingerprint).items()
            if scheme_id in live and scheme.compute_hash() == live[scheme_id]
        }
        result = SyncResult(
            outcome=SyncOutcome.UP_TO_DATE,
            corpus_version=snapshot.version,
            manifest_version=manifest.version,
            resumed_count=sum(1 for scheme_id in to_fetch if scheme_id in confirmed),
            removed_count=len(removals),
        )

        logger.info(
            f"Manifest compared: {len(to_fetch)} to fetch, {len(removals)} to remove",
            extra={
                "event": "sync.manifest.compared",
                "manifest_version": manifest.version,
                "manifest_entries": len(manifest.entries),
                "to_fetch": len(to_fetch),
                "to_remove": len(removals),
                "resumed": result.resumed_count,
            },
        )

        for scheme_id in to_fetch:
            self._check_cancel(cancel)
            if scheme_id in confirmed:
                continue

            try:
                scheme = self._with_retry(
                    lambda: self.authority.fetch_record(scheme_id), f"record {scheme_id}", cancel
                )
            except NetworkError as e:
                return self._go_stale(f"Record fetch failed for {scheme_id}: {e}", result)
            except AuthorityError as e:
                logger.error(
                    f"Dropping {scheme_id}: {e}",
                    extra={"event": "sync.record.dropped", "scheme_id": scheme_id},
                )
                result.dropped.append(scheme_id)
                continue

            result.fetched_count += 1
            try:
                verified = self._verify(scheme_id, scheme, live[scheme_id])
            except IntegrityError as e:
                logger.error(
                    str(e),
                    extra={
                        "event": "sync.record.integrity_failed",
                        "scheme_id": scheme_id,
                        "expected_hash": e.expected_hash,
                        "actual_hash": e.actual_hash,
                    },
                )
                result.integrity_failures.append(scheme_id)
                continue

            self.checkpoints.save(fingerprint, verified)
            confirmed[scheme_id] = verified

        delta = self._build_delta(snapshot.version, to_fetch, confirmed, removals, local)
        self._check_cancel(cancel)

        try:
            version, events = self.corpus.apply_delta(delta)
        except ValidationError as e:
            self.checkpoints.clear(fingerprint)
            logger.error(
                f"Corpus rejected delta: {e}",
                extra={"event": "sync.delta.rejected", "field": e.field, "errors": e.errors},
            )
            result.outcome = SyncOutcome.REJECTED
            result.error_message = str(e)
            self.corpus.mark_stale(f"Delta rejected: {e}")
            self._record_error(result.error_message)
            return result
        except ConflictError as e:
            # Checkpoint kept; the next cycle resumes against the reloaded corpus
            logger.error(
                f"Corpus store kept conflicting: {e}",
                extra={"event": "sync.delta.conflict", "expected_version": e.expected_version},
            )
            result.corpus_version = self.corpus.version
            return self._go_stale(f"Corpus store conflict: {e}", result)

        self.checkpoints.clear(fingerprint)
        if not result.integrity_failures and not result.dropped:
            self._authority_version = manifest.version

        result.corpus_version = version
        result.events = events
        result.outcome = SyncOutcome.APPLIED if events else SyncOutcome.UP_TO_DATE

        self.corpus.mark_fresh()
        self._record_success(version)
        return result

    @staticmethod
    def _removals(manifest: Manifest, local: Dict[str, str], live: Dict[str, str]) -> List[str]:
        removals = {scheme_id for scheme_id in manifest.tombstones() if scheme_id in local}
        if manifest.complete:
            removals.update(scheme_id for scheme_id in local if scheme_id not in live)
        return sorted(removals - set(live))

    @staticmethod
    def _verify(scheme_id: str, scheme: Scheme, expected_hash: str) -> Scheme:
        actual_hash = scheme.compute_hash()
        if scheme.id != scheme_id or actual_hash != expected_hash:
            raise IntegrityError(scheme_id, expected_hash, actual_hash)
        return scheme.with_computed_hash()

    @staticmethod
    def _build_delta(
        base_version: int,
        to_fetch: List[str],
        confirmed: Dict[str, Scheme],
        removals: List[str],
        local: Dict[str, str],
    ) -> Delta:
        ops = [
            DeltaOp(
                op=DeltaOpType.UPDATE if scheme_id in local else DeltaOpType.ADD,
                scheme_id=scheme_id,
                payload=confirmed[scheme_id],
            )
            for scheme_id in to_fetch
            if scheme_id in confirmed
        ]
        ops.extend(
            DeltaOp(op=DeltaOpType.REMOVE, scheme_id=scheme_id, content_hash=local[scheme_id])
            for scheme_id in removals
        )
        return Delta(ops=tuple(ops), base_version=base_version)

    def _with_retry(self, operation: Callable[[], T], description: str, cancel: threading.Event) -> T:
        """Call ``operation``, retrying NetworkError with exponential backoff.

        Raises:
            NetworkError: When max_attempts is exhausted
            SyncCancelled: When the cancel event is set during backoff
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation()
            except NetworkError as e:
                if attempt >= self.settings.max_attempts:
                    logger.error(
                        f"Giving up on {description} after {attempt} attempts: {e}",
                        extra={"event": "sync.retry.exhausted", "attempts": attempt},
                    )
                    raise

                delay = self.settings.retry_delay(attempt)
                logger.warning(
                    f"Retrying {description} in {delay:.2f}s (attempt {attempt}): {e}",
                    extra={"event": "sync.retry.scheduled", "attempt": attempt, "delay_seconds": delay},
                )
                if cancel.wait(delay):
                    raise SyncCancelled(f"Cancelled while backing off on {description}") from e

    @staticmethod
    def _check_cancel(cancel: threading.Event) -> None:
        if cancel.is_set():
            raise SyncCancelled("Cancelled between record fetches")

    def _go_stale(self, reason: str, result: Optional[SyncResult] = None) -> SyncResult:
        self.corpus.mark_stale(reason)
        self._record_error(reason)
        if result is None:
            result = SyncResult(outcome=SyncOutcome.STALE, corpus_version=self.corpus.version)
        result.outcome = SyncOutcome.STALE
        result.error_message = reason
        return result

    def _record_success(self, corpus_version: int) -> None:
        if not self.persist_status:
            return
        with get_session() as session:
            SyncStatusRepository(session).record_success(
                self.authority.name, utc_now(), corpus_version, self._authority_version
            )

    def _record_error(self, message: str) -> None:
        if not self.persist_status:
            return
        with get_session() as session:
            SyncStatusRepository(session).record_error(self.authority.name, utc_now(), message)
