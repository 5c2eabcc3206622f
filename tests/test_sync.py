"""Unit tests for the sync engine using the fixture authority."""

import threading

import pytest

from scheme_engine.config.models import SyncSettings
from scheme_engine.corpus import ConflictError, CorpusStore, SchemeCorpus, StoredCorpus
from scheme_engine.domain.models import ChangeKind
from scheme_engine.persistence import SyncStatusRepository, get_session
from scheme_engine.sync import (
    InMemoryCheckpointStore,
    NetworkError,
    SqlCheckpointStore,
    SyncEngine,
    SyncOutcome,
)
from tests.helpers import FixtureAuthority, add_delta, ids, make_scheme


@pytest.fixture
def settings():
    """Retry policy with no backoff delay."""
    return SyncSettings(max_attempts=3, initial_delay_seconds=0.0, max_delay_seconds=0.0)


@pytest.fixture
def corpus():
    return SchemeCorpus()


def make_engine(corpus, authority, settings, **kwargs):
    return SyncEngine(corpus=corpus, authority=authority, settings=settings, **kwargs)


class AlwaysConflictingStore(CorpusStore):
    """Store where another writer always commits first."""

    def __init__(self):
        self.commits = 0

    def load(self, history_limit):
        return StoredCorpus(version=0)

    def commit(self, expected_version, new_version, upserts, removals, events):
        self.commits += 1
        raise ConflictError(expected_version)


class TestReconcile:
    """Tests for a single reconciliation cycle."""

    def test_initial_sync_adds_everything(self, corpus, settings):
        authority = FixtureAuthority([make_scheme("A"), make_scheme("B")])

        result = make_engine(corpus, authority, settings).reconcile()

        assert result.outcome is SyncOutcome.APPLIED
        assert result.corpus_version == 1
        assert result.fetched_count == 2
        assert result.manifest_version == 1
        assert ids(result.events) == ["A", "B"]
        assert sorted(s.id for s in corpus.current_snapshot()) == ["A", "B"]
        assert not result.had_errors

    def test_only_changed_records_are_fetched(self, corpus, settings):
        schemes = [make_scheme(f"S{i:04d}") for i in range(1000)]
        corpus.apply_delta(add_delta(*schemes))
        authority = FixtureAuthority(schemes)
        authority.publish(
            make_scheme("S0007", benefits="changed"),
            make_scheme("S0500", benefits="changed"),
            make_scheme("S0999", benefits="changed"),
        )

        result = make_engine(corpus, authority, settings).reconcile()

        assert authority.total_fetches == 3
        assert result.fetched_count == 3
        assert result.outcome is SyncOutcome.APPLIED
        assert [e.kind for e in result.events] == [ChangeKind.UPDATED] * 3
        assert corpus.version == 2

    def test_second_cycle_is_up_to_date(self, corpus, settings):
        authority = FixtureAuthority([make_scheme("A")])
        engine = make_engine(corpus, authority, settings)
        engine.reconcile()

        result = engine.reconcile()

        assert result.outcome is SyncOutcome.UP_TO_DATE
        assert result.fetched_count == 0
        assert result.events == []
        assert corpus.version == 1
        assert authority.manifest_calls == [None, 1]

    def test_corrupt_record_is_dropped(self, corpus, settings):
        authority = FixtureAuthority([make_scheme("A"), make_scheme("B")])
        authority.corrupt_ids.add("B")
        engine = make_engine(corpus, authority, settings)

        result = engine.reconcile()

        assert result.integrity_failures == ["B"]
        assert ids(result.events) == ["A"]
        assert "B" not in corpus.current_snapshot()
        assert result.had_errors
        # Manifest version not advanced so B is offered again next cycle
        assert engine.authority_version is None

    def test_rejected_record_is_dropped(self, corpus, settings):
        authority = FixtureAuthority([make_scheme("A"), make_scheme("B")])
        authority.rejected_ids.add("A")

        result = make_engine(corpus, authority, settings).reconcile()

        assert result.dropped == ["A"]
        assert ids(result.events) == ["B"]

    def test_clean_cycle_advances_authority_version(self, corpus, settings):
        authority = FixtureAuthority([make_scheme("A")])
        engine = make_engine(corpus, authority, settings)

        engine.reconcile()
        authority.publish(make_scheme("B"))
        engine.reconcile()

        assert engine.authority_version == 2
        assert authority.manifest_calls == [None, 1]


class TestRemovals:
    """Tests for removal detection."""

    def test_tombstone_removes_local_scheme(self, corpus, settings):
        authority = FixtureAuthority([make_scheme("A"), make_scheme("B")])
        engine = make_engine(corpus, authority, settings)
        engine.reconcile()

        authority.retract("A")
        result = engine.reconcile()

        assert result.removed_count == 1
        assert [(e.scheme_id, e.kind) for e in result.events] == [("A", ChangeKind.REMOVED)]
        assert "A" not in corpus.current_snapshot()

    def test_complete_manifest_implies_removal(self, corpus, settings):
        authority = FixtureAuthority([make_scheme("A"), make_scheme("B")])
        engine = make_engine(corpus, authority, settings)
        engine.reconcile()

        del authority.schemes["B"]
        engine.reconcile()

        assert sorted(s.id for s in corpus.current_snapshot()) == ["A"]

    def test_partial_manifest_keeps_unlisted_schemes(self, corpus, settings):
        authority = FixtureAuthority([make_scheme("A"), make_scheme("B")])
        engine = make_engine(corpus, authority, settings)
        engine.reconcile()

        authority.complete = False
        del authority.schemes["B"]
        result = engine.reconcile()

        assert result.outcome is SyncOutcome.UP_TO_DATE
        assert "B" in corpus.current_snapshot()


class TestFailures:
    """Tests for retry, staleness and rejection."""

    def test_transient_manifest_failure_is_retried(self, corpus, settings):
        authority = FixtureAuthority([make_scheme("A")])
        authority.manifest_failures = 2

        result = make_engine(corpus, authority, settings).reconcile()

        assert result.outcome is SyncOutcome.APPLIED
        assert len(authority.manifest_calls) == 3

    def test_exhausted_retries_mark_corpus_stale(self, corpus, settings):
        corpus.apply_delta(add_delta(make_scheme("KEEP")))
        authority = FixtureAuthority([make_scheme("A")])
        authority.manifest_failures = 10

        result = make_engine(corpus, authority, settings).reconcile()

        assert result.outcome is SyncOutcome.STALE
        assert result.had_errors
        assert "Manifest fetch failed" in result.error_message
        assert len(authority.manifest_calls) == 3
        assert corpus.is_stale
        # Last good snapshot keeps serving
        assert "KEEP" in corpus.current_snapshot()

    def test_record_failure_goes_stale_without_applying(self, corpus, settings):
        authority = FixtureAuthority([make_scheme("A"), make_scheme("B")])
        authority.record_failures["B"] = 10

        result = make_engine(corpus, authority, settings).reconcile()

        assert result.outcome is SyncOutcome.STALE
        assert authority.fetch_counts["B"] == 3
        assert corpus.version == 0

    def test_success_clears_stale_flag(self, corpus, settings):
        authority = FixtureAuthority([make_scheme("A")])
        authority.manifest_failures = 3
        engine = make_engine(corpus, authority, settings)

        engine.reconcile()
        assert corpus.is_stale

        engine.reconcile()
        assert not corpus.is_stale
        assert corpus.status.last_refreshed_at is not None

    def test_malformed_authority_record_rejects_delta(self, corpus, settings):
        bad = make_scheme("BAD", criteria={"age": {"kind": "range", "min": 50, "max": 30}})
        authority = FixtureAuthority([make_scheme("A"), bad])

        result = make_engine(corpus, authority, settings).reconcile()

        assert result.outcome is SyncOutcome.REJECTED
        assert "schemes[BAD].criteria.age" in result.error_message
        assert corpus.version == 0
        assert corpus.is_stale

    def test_repeated_store_conflict_goes_stale_and_keeps_checkpoint(self, settings):
        store = AlwaysConflictingStore()
        corpus = SchemeCorpus(store=store)
        authority = FixtureAuthority([make_scheme("A")])
        engine = make_engine(corpus, authority, settings, checkpoints=InMemoryCheckpointStore())

        result = engine.reconcile()

        assert result.outcome is SyncOutcome.STALE
        assert "Corpus store conflict" in result.error_message
        assert store.commits == 2
        assert corpus.version == 0
        assert corpus.is_stale

        retried = engine.reconcile()

        assert retried.outcome is SyncOutcome.STALE
        assert retried.resumed_count == 1
        assert authority.fetch_counts["A"] == 1


class TestCancellationAndResume:
    """Tests for cancellation and checkpoint resumption."""

    def test_cancel_before_start(self, corpus, settings):
        cancel = threading.Event()
        cancel.set()
        authority = FixtureAuthority([make_scheme("A")])

        result = make_engine(corpus, authority, settings).reconcile(cancel)

        assert result.outcome is SyncOutcome.CANCELLED
        assert authority.manifest_calls == []
        assert not result.had_errors

    def test_cancel_during_backoff(self, corpus):
        cancel = threading.Event()
        authority = FixtureAuthority([make_scheme("A"), make_scheme("B")])
        original_fetch = authority.fetch_record

        def fetch_then_cancel(scheme_id):
            if scheme_id == "B":
                cancel.set()
                raise NetworkError("connection reset")
            return original_fetch(scheme_id)

        authority.fetch_record = fetch_then_cancel
        checkpoints = InMemoryCheckpointStore()
        engine = make_engine(
            corpus, authority, SyncSettings(initial_delay_seconds=30.0), checkpoints=checkpoints
        )

        result = engine.reconcile(cancel)

        assert result.outcome is SyncOutcome.CANCELLED
        assert corpus.version == 0

    def test_resume_skips_confirmed_records(self, corpus, settings):
        authority = FixtureAuthority([make_scheme("A"), make_scheme("B"), make_scheme("C")])
        authority.record_failures["C"] = 3
        checkpoints = InMemoryCheckpointStore()
        engine = make_engine(corpus, authority, settings, checkpoints=checkpoints)

        first = engine.reconcile()
        assert first.outcome is SyncOutcome.STALE

        second = engine.reconcile()

        assert second.outcome is SyncOutcome.APPLIED
        assert second.resumed_count == 2
        assert second.fetched_count == 1
        assert authority.fetch_counts["A"] == 1
        assert authority.fetch_counts["B"] == 1
        assert ids(second.events) == ["A", "B", "C"]

    def test_changed_manifest_discards_checkpoint(self, corpus, settings):
        authority = FixtureAuthority([make_scheme("A"), make_scheme("B")])
        authority.record_failures["B"] = 3
        engine = make_engine(corpus, authority, settings)
        engine.reconcile()

        authority.publish(make_scheme("A", benefits="revised"))
        result = engine.reconcile()

        assert result.resumed_count == 0
        assert authority.fetch_counts["A"] == 2
        assert corpus.current_snapshot().get("A").benefits == "revised"


class TestPersistedStatus:
    """Tests for SyncStatus bookkeeping (requires a database)."""

    def test_status_rows_follow_cycles(self, database, settings):
        corpus = SchemeCorpus()
        authority = FixtureAuthority([make_scheme("A")])
        engine = make_engine(corpus, authority, settings, persist_status=True)

        engine.reconcile()
        with get_session() as session:
            status = SyncStatusRepository(session).get(authority.name)
        assert status.corpus_version == 1
        assert status.authority_version == 1
        assert status.is_stale is False

        authority.manifest_failures = 5
        engine.reconcile()
        with get_session() as session:
            status = SyncStatusRepository(session).get(authority.name)
        assert status.is_stale is True
        assert "Manifest fetch failed" in status.error_message
        assert status.last_success_at is not None

    def test_authority_version_restored_on_restart(self, database, settings):
        authority = FixtureAuthority([make_scheme("A")])
        make_engine(SchemeCorpus(), authority, settings, persist_status=True).reconcile()

        restarted = make_engine(SchemeCorpus(), authority, settings, persist_status=True)

        assert restarted.authority_version == 1

    def test_sql_checkpoints_survive_engine_restart(self, database, settings):
        corpus = SchemeCorpus()
        authority = FixtureAuthority([make_scheme("A"), make_scheme("B")])
        authority.record_failures["B"] = 3
        make_engine(corpus, authority, settings, checkpoints=SqlCheckpointStore()).reconcile()

        result = make_engine(corpus, authority, settings, checkpoints=SqlCheckpointStore()).reconcile()

        assert result.resumed_count == 1
        assert authority.fetch_counts["A"] == 1
        assert result.outcome is SyncOutcome.APPLIED
