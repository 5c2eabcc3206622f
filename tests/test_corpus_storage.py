"""Tests for the SQL-backed corpus store."""

import pytest

from scheme_engine.corpus import SchemeCorpus, SqlCorpusStore
from scheme_engine.corpus.exceptions import ConflictError
from scheme_engine.domain.models import ChangeKind, DeltaOpType
from scheme_engine.persistence import SchemeRepository, get_session
from tests.helpers import add_delta, ids, make_scheme, remove_delta, update_delta


class TestSqlCorpusStore:
    """Corpus writes survive a restart."""

    def test_reload_restores_version_and_records(self, database):
        corpus = SchemeCorpus(store=SqlCorpusStore())
        corpus.apply_delta(add_delta(make_scheme("A"), make_scheme("B")))
        corpus.apply_delta(update_delta(make_scheme("A", benefits="more")))

        reloaded = SchemeCorpus(store=SqlCorpusStore())

        assert reloaded.version == 2
        assert sorted(s.id for s in reloaded.current_snapshot()) == ["A", "B"]
        assert reloaded.current_snapshot().get("A").benefits == "more"
        assert reloaded.current_snapshot().hashes() == corpus.current_snapshot().hashes()

    def test_removal_is_persisted(self, database):
        scheme = make_scheme("A")
        corpus = SchemeCorpus(store=SqlCorpusStore())
        corpus.apply_delta(add_delta(scheme))
        corpus.apply_delta(remove_delta(scheme))

        with get_session() as session:
            assert SchemeRepository(session).get("A") is None

        assert len(SchemeCorpus(store=SqlCorpusStore()).current_snapshot()) == 0

    def test_history_survives_reload(self, database):
        corpus = SchemeCorpus(store=SqlCorpusStore())
        corpus.apply_delta(add_delta(make_scheme("A")))
        corpus.apply_delta(add_delta(make_scheme("B")))

        reloaded = SchemeCorpus(store=SqlCorpusStore())
        delta = reloaded.get_since(1)

        assert [(op.op, op.scheme_id) for op in delta.ops] == [(DeltaOpType.ADD, "B")]

    def test_stale_writer_reloads_and_retries(self, database):
        first = SchemeCorpus(store=SqlCorpusStore())
        second = SchemeCorpus(store=SqlCorpusStore())

        first.apply_delta(add_delta(make_scheme("A")))
        version, events = second.apply_delta(add_delta(make_scheme("B")))

        assert version == 2
        assert ids(events) == ["B"]
        assert [e.kind for e in events] == [ChangeKind.ADDED]
        assert sorted(s.id for s in second.current_snapshot()) == ["A", "B"]

    def test_retry_drops_ops_already_applied_elsewhere(self, database):
        first = SchemeCorpus(store=SqlCorpusStore())
        second = SchemeCorpus(store=SqlCorpusStore())
        delta = add_delta(make_scheme("A"))

        first.apply_delta(delta)
        version, events = second.apply_delta(delta)

        assert version == 1
        assert events == []

    def test_commit_with_wrong_version_conflicts(self, database):
        store = SqlCorpusStore()
        store.commit(0, 1, [make_scheme("A")], [], [])

        with pytest.raises(ConflictError):
            store.commit(0, 1, [make_scheme("B")], [], [])

        with get_session() as session:
            assert SchemeRepository(session).get("B") is None
