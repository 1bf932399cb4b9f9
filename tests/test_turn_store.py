"""Tests for turn persistence, feedback and quality statistics."""

from datetime import date, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from pmchat.contracts import (
    ChartPoint,
    ChartType,
    FeedbackDetail,
    FeedbackRating,
    MindmapNode,
    StatsFilter,
    Turn,
    TurnRole,
)
from pmchat.errors import TurnNotFound
from pmchat.store import TurnStore, new_turn_id

BASE_TIME = datetime(2026, 3, 2, 9, 0, 0)


@pytest.fixture()
def store(tmp_path):
    return TurnStore(tmp_path / "runtime" / "turns.duckdb")


def _assistant(store, *, minutes=0, project_id="proj-1", processing=100.0, gen=None, exec_=None, **fields):
    turn = Turn(
        id=new_turn_id(),
        role=TurnRole.ASSISTANT,
        content=fields.pop("content", "answer"),
        processing_time_ms=processing,
        sql_gen_time_ms=gen,
        sql_exec_time_ms=exec_,
        project_id=project_id,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        **fields,
    )
    return store.record_turn(turn)


def _user(store, text, *, minutes=0, project_id="proj-1"):
    turn = Turn(
        id=new_turn_id(),
        role=TurnRole.USER,
        content=text,
        user_query=text,
        project_id=project_id,
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )
    return store.record_turn(turn)


class TestTurns:
    def test_round_trip_with_chart_data(self, store):
        turn = _assistant(
            store,
            sql_query="SELECT status, count(*) FROM issues WHERE project_id = 'proj-1' GROUP BY 1",
            chart_type=ChartType.BAR,
            chart_data=[ChartPoint(name="OPEN", value=5), ChartPoint(name="CLOSED", value=3)],
            user_query="How are issues distributed?",
            gen=40.0,
            exec_=2.5,
        )
        loaded = store.get_turn(turn.id)

        assert loaded == turn

    def test_round_trip_with_mindmap(self, store):
        tree = MindmapNode(
            name="Design", value=60, color="#06B6D4",
            children=[MindmapNode(name="UI design", value=100, color="#10B981")],
        )
        turn = _assistant(store, chart_type=ChartType.MINDMAP, mindmap_data=tree, mindmap_expand_depth=3)
        loaded = store.get_turn(turn.id)

        assert loaded.mindmap_data == tree
        assert loaded.chart_data is None
        assert loaded.mindmap_expand_depth == 3

    def test_turn_cannot_carry_both_payloads(self):
        with pytest.raises(ValidationError):
            Turn(
                id="t1",
                role=TurnRole.ASSISTANT,
                chart_type=ChartType.BAR,
                chart_data=[ChartPoint(name="a", value=1)],
                mindmap_data=MindmapNode(name="root"),
                created_at=BASE_TIME,
            )

    def test_aware_timestamps_are_stored_as_utc(self, store):
        aware = datetime(2026, 3, 2, 18, 0, tzinfo=timezone(timedelta(hours=9)))
        turn = store.record_turn(Turn(id=new_turn_id(), role=TurnRole.USER, content="q", created_at=aware))
        assert store.get_turn(turn.id).created_at == datetime(2026, 3, 2, 9, 0)

    def test_unknown_turn(self, store):
        assert store.get_turn("missing") is None

    def test_list_turns_returns_newest_window_oldest_first(self, store):
        for i in range(5):
            _user(store, f"q{i}", minutes=i)
        _user(store, "other project", minutes=10, project_id="proj-2")

        assert [t.content for t in store.list_turns("proj-1", limit=3)] == ["q2", "q3", "q4"]
        assert len(store.list_turns(None, limit=50)) == 6

    def test_same_timestamp_keeps_insertion_order(self, store):
        first = _user(store, "question")
        second = _assistant(store, content="answer")
        assert [t.id for t in store.list_turns("proj-1")] == [first.id, second.id]

    def test_recent_history_is_scoped_exactly(self, store):
        _user(store, "scoped", minutes=1)
        _user(store, "cross-project", minutes=2, project_id=None)

        assert [t.content for t in store.recent_history("proj-1", 6)] == ["scoped"]
        assert [t.content for t in store.recent_history(None, 6)] == ["cross-project"]
        assert store.recent_history("proj-1", 0) == []

    def test_delete_turns_removes_feedback_too(self, store):
        keep = _assistant(store, project_id="proj-2")
        gone = _assistant(store)
        store.attach_feedback(gone.id, "positive")
        store.attach_feedback(keep.id, "negative")

        assert store.delete_turns("proj-1") == 1
        assert store.get_turn(gone.id) is None
        assert store.compute_stats().total == 1
        assert store.delete_turns() == 1
        assert store.compute_stats().total == 0


class TestFeedback:
    def test_feedback_on_unknown_turn_is_rejected(self, store):
        with pytest.raises(TurnNotFound):
            store.attach_feedback("no-such-turn", "positive")
        assert store.compute_stats().total == 0

    def test_rating_is_case_insensitive(self, store):
        turn = _assistant(store)
        feedback = store.attach_feedback(turn.id, "POSITIVE")
        assert feedback.rating == FeedbackRating.POSITIVE

    def test_unknown_rating_is_a_value_error(self, store):
        turn = _assistant(store)
        with pytest.raises(ValueError):
            store.attach_feedback(turn.id, "great")

    def test_feedback_is_append_only(self, store):
        turn = _assistant(store)
        store.attach_feedback(turn.id, "positive")
        store.attach_feedback(turn.id, "negative")

        stats = store.compute_stats()
        assert (stats.total, stats.positive, stats.negative) == (2, 1, 1)

    def test_detail_fields_and_tags(self, store):
        turn = _assistant(store, sql_query="SELECT 1", user_query="q?")
        store.attach_feedback(
            turn.id,
            FeedbackRating.NEGATIVE,
            FeedbackDetail(comment="wrong table", is_sql_correct=False, tags=["sql", "data", "sql", " "]),
        )

        [entry] = store.list_feedback()
        assert entry.comment == "wrong table"
        assert entry.is_sql_correct is False
        assert entry.is_response_helpful is None
        assert entry.tags == ["data", "sql"]
        assert entry.user_query == "q?"
        assert entry.sql_query == "SELECT 1"
        assert entry.answer == "answer"

    def test_list_feedback_newest_first_with_paging(self, store):
        turns = [_assistant(store, minutes=i) for i in range(3)]
        for turn in turns:
            store.attach_feedback(turn.id, "neutral")

        page = store.list_feedback(limit=2)
        assert len(page) == 2
        assert page[0].created_at >= page[1].created_at
        assert len(store.list_feedback(limit=2, offset=2)) == 1
        assert store.count_feedback() == 3


class TestStats:
    def test_empty_stats_are_zero(self, store):
        stats = store.compute_stats()
        assert stats.total == 0
        assert stats.positive_rate == 0.0
        assert stats.avg_processing_time_ms == 0.0
        assert stats.avg_sql_gen_time_ms == 0.0

    def test_averages_are_over_distinct_rated_turns(self, store):
        a = _assistant(store, processing=100.0, gen=10.0, exec_=1.0)
        b = _assistant(store, processing=200.0, gen=20.0)
        c = _assistant(store, processing=300.0, gen=30.0, exec_=3.0)
        _assistant(store, processing=5000.0)  # never rated

        store.attach_feedback(a.id, "positive")
        store.attach_feedback(a.id, "positive")  # rated twice, counted once in averages
        store.attach_feedback(b.id, "negative")
        store.attach_feedback(c.id, "neutral")

        stats = store.compute_stats()
        assert (stats.total, stats.positive, stats.negative, stats.neutral) == (4, 2, 1, 1)
        assert stats.positive_rate == 50.0
        assert stats.avg_processing_time_ms == 200.0
        assert stats.avg_sql_gen_time_ms == 20.0
        assert stats.avg_sql_exec_time_ms == 2.0

    def test_positive_rate_is_rounded_to_one_decimal(self, store):
        for rating in ("positive", "negative", "negative"):
            store.attach_feedback(_assistant(store).id, rating)
        assert store.compute_stats().positive_rate == 33.3

    def test_filters(self, store):
        early = _assistant(store, minutes=0)
        late = _assistant(store, minutes=60 * 24 * 3)
        other = _assistant(store, project_id="proj-2")
        store.attach_feedback(early.id, "positive")
        store.attach_feedback(late.id, "negative")
        store.attach_feedback(other.id, "positive")

        assert store.compute_stats(StatsFilter(project_id="proj-1")).total == 2
        assert store.compute_stats(StatsFilter(rating=FeedbackRating.POSITIVE)).total == 2
        # End date is inclusive of the whole day
        day = BASE_TIME.date()
        assert store.compute_stats(StatsFilter(start_date=day, end_date=day)).total == 2
        assert store.compute_stats(StatsFilter(start_date=day + timedelta(days=1))).total == 1
        assert store.count_feedback(StatsFilter(end_date=date(2026, 3, 1))) == 0

    def test_same_filter_gives_same_numbers(self, store):
        store.attach_feedback(_assistant(store).id, "positive")
        flt = StatsFilter(project_id="proj-1")
        assert store.compute_stats(flt) == store.compute_stats(flt)

    def test_start_after_end_is_rejected(self):
        with pytest.raises(ValidationError):
            StatsFilter(start_date=date(2026, 3, 5), end_date=date(2026, 3, 1))
