"""End-to-end tests for the chat pipeline with a stubbed text generator."""

import duckdb
import pytest

from pmchat.contracts import ChartPoint, ChartType, FeedbackRating, StatsFilter, TurnRole
from pmchat.errors import PersonaNotFoundError, QueryTimeout, TurnNotFound
from pmchat.explain.composer import NO_DATA_ANSWER
from pmchat.orchestrator import ChatOrchestrator, TurnStage

HAPPY_PATH = [
    TurnStage.RECEIVED,
    TurnStage.PERSONA_RESOLVED,
    TurnStage.SQL_GENERATING,
    TurnStage.SQL_GENERATED,
    TurnStage.SQL_VALIDATING,
    TurnStage.SQL_EXECUTING,
    TurnStage.RESULT_SHAPING,
    TurnStage.ANALYSIS_COMPOSING,
    TurnStage.PERSISTED,
]


def _task_count(db_path):
    conn = duckdb.connect(str(db_path), read_only=True, config={"enable_external_access": False})
    try:
        return conn.execute("SELECT count(*) FROM tasks").fetchone()[0]
    finally:
        conn.close()


class TestChartAnswers:
    def test_issue_status_bar_chart(self, orchestrator, stub_generator):
        outcome = orchestrator.run_turn("Issue count by status as a chart", project_id="proj-1")
        turn = outcome.turn

        assert outcome.stages == HAPPY_PATH
        assert not outcome.failed
        assert turn.role == TurnRole.ASSISTANT
        assert turn.chart_type == ChartType.BAR
        assert turn.chart_data == [ChartPoint(name="OPEN", value=5), ChartPoint(name="CLOSED", value=3)]
        assert turn.mindmap_data is None
        assert turn.content.startswith("**Open issues dominate.**")
        assert turn.error_message is None
        assert "project_id = 'proj-1'" in turn.sql_query
        assert turn.sql_gen_time_ms is not None and turn.sql_exec_time_ms is not None
        assert turn.processing_time_ms >= turn.sql_exec_time_ms
        assert stub_generator.roles() == ["sql", "analysis"]

    def test_both_turns_are_persisted_in_order(self, orchestrator):
        outcome = orchestrator.run_turn("Issue count by status as a chart", project_id="proj-1")

        stored = orchestrator.history("proj-1")
        assert [t.id for t in stored] == [outcome.user_turn.id, outcome.turn.id]
        assert stored[0].content == "Issue count by status as a chart"
        assert stored[1] == outcome.turn

    def test_wbs_mindmap(self, orchestrator, sql_reply):
        sql_reply(
            "SELECT id, parent_id, name, progress FROM wbs_items WHERE project_id = 'proj-1' ORDER BY code",
            "mindmap",
        )
        turn = orchestrator.submit_turn("Show the WBS as a mindmap", project_id="proj-1")

        assert turn.chart_type == ChartType.MINDMAP
        assert turn.chart_data is None
        assert turn.mindmap_data.name == "Design"
        assert turn.mindmap_data.count_nodes() == 4
        assert turn.mindmap_expand_depth == 3

    def test_persona_prompt_reaches_both_calls(self, orchestrator, stub_generator):
        persona = orchestrator.persona_store.create_persona(name="Auditor", system_prompt="Be strict.")
        orchestrator.run_turn("Issue count by status", project_id="proj-1", persona_id=persona.id)

        for _, _, context in stub_generator.calls:
            assert context["system_prompt"].startswith("Be strict.\n\n")


class TestFailures:
    def test_unsafe_sql_is_rejected_and_recorded(self, orchestrator, stub_generator, sql_reply, project_db):
        sql_reply("DROP TABLE tasks;")
        outcome = orchestrator.run_turn("Delete all tasks", project_id="proj-1")
        turn = outcome.turn

        assert outcome.failed
        assert TurnStage.SQL_REJECTED in outcome.stages
        assert TurnStage.SQL_EXECUTING not in outcome.stages
        assert outcome.stages[-1] == TurnStage.PERSISTED
        assert turn.error_message.startswith("Query rejected by safety policy")
        assert turn.sql_query == "DROP TABLE tasks;"
        assert turn.chart_type == ChartType.NONE
        assert turn.content.startswith("I could not answer this question.")
        assert stub_generator.roles() == ["sql"]
        assert _task_count(project_db) == 3

    def test_other_project_is_rejected(self, orchestrator, sql_reply):
        sql_reply("SELECT status, count(*) FROM issues WHERE project_id = 'proj-2' GROUP BY status", "bar")
        turn = orchestrator.submit_turn("Issues of the other project", project_id="proj-1")

        assert "another project" in turn.error_message
        assert turn.chart_data is None

    def test_empty_result_gets_no_data_answer(self, orchestrator, stub_generator, sql_reply):
        sql_reply(
            "SELECT status, count(*) AS count FROM issues "
            "WHERE project_id = 'proj-1' AND status = 'WONT_FIX' GROUP BY status",
            "bar",
        )
        turn = orchestrator.submit_turn("How many WONT_FIX issues?", project_id="proj-1")

        assert turn.content == NO_DATA_ANSWER
        assert turn.chart_type == ChartType.NONE
        assert turn.error_message is None
        assert stub_generator.roles() == ["sql"]

    def test_generation_failure(self, orchestrator, stub_generator):
        stub_generator.replies["sql"] = ConnectionError("connection refused")
        outcome = orchestrator.run_turn("Anything", project_id="proj-1")

        assert TurnStage.SQL_GEN_FAILED in outcome.stages
        assert outcome.turn.sql_query is None
        assert "could not be reached" in outcome.turn.error_message

    def test_unparseable_reply_is_a_generation_failure(self, orchestrator, stub_generator):
        stub_generator.replies["sql"] = "I am not sure what you mean."
        outcome = orchestrator.run_turn("???", project_id="proj-1")
        assert TurnStage.SQL_GEN_FAILED in outcome.stages
        assert outcome.turn.error_message

    def test_execution_error_is_sanitized(self, orchestrator, sql_reply):
        sql_reply("SELECT secret_column FROM issues WHERE project_id = 'proj-1'")
        outcome = orchestrator.run_turn("Broken query", project_id="proj-1")

        assert TurnStage.EXEC_FAILED in outcome.stages
        assert "secret_column" not in outcome.turn.error_message
        assert outcome.turn.sql_exec_time_ms is not None

    def test_execution_timeout(self, orchestrator, monkeypatch):
        def _timeout(sql, *, project_id=None):
            raise QueryTimeout(5.0, elapsed_ms=5001.0)

        monkeypatch.setattr(orchestrator.executor, "execute", _timeout)
        outcome = orchestrator.run_turn("Slow question", project_id="proj-1")

        assert TurnStage.EXEC_TIMEOUT in outcome.stages
        assert outcome.turn.error_message == "Query timed out after 5s"
        assert outcome.turn.sql_exec_time_ms == 5001.0

    def test_analysis_failure_keeps_the_chart(self, orchestrator, stub_generator):
        stub_generator.replies["analysis"] = RuntimeError("provider down")
        outcome = orchestrator.run_turn("Issue count by status", project_id="proj-1")

        assert outcome.used_fallback
        assert outcome.turn.chart_type == ChartType.BAR
        assert outcome.turn.error_message is None
        assert "| OPEN | 5 |" in outcome.turn.content


class TestConversation:
    def test_conversational_question_skips_sql(self, orchestrator, stub_generator):
        stub_generator.replies["sql"] = "NO_SQL"
        stub_generator.replies["analysis"] = "Hello! I can chart tasks, issues and the WBS."
        outcome = orchestrator.run_turn("Hello", project_id="proj-1")

        assert outcome.turn.sql_query is None
        assert outcome.turn.content == "Hello! I can chart tasks, issues and the WBS."
        assert TurnStage.SQL_EXECUTING not in outcome.stages
        assert stub_generator.roles() == ["sql", "analysis"]

    def test_follow_up_prompt_carries_history(self, orchestrator, stub_generator):
        orchestrator.run_turn("Issue count by status as a chart", project_id="proj-1")
        orchestrator.run_turn("And only the open ones?", project_id="proj-1")

        sql_prompts = [prompt for role, prompt, _ in stub_generator.calls if role == "sql"]
        assert "User: Issue count by status as a chart" not in sql_prompts[0]
        assert "User: Issue count by status as a chart" in sql_prompts[1]
        assert "(SQL used: SELECT status" in sql_prompts[1]

    def test_history_does_not_leak_across_projects(self, orchestrator, stub_generator):
        orchestrator.run_turn("Question about project one", project_id="proj-1")
        stub_generator.replies["sql"] = "NO_SQL"
        orchestrator.run_turn("Question about everything")

        last_sql_prompt = [prompt for role, prompt, _ in stub_generator.calls if role == "sql"][-1]
        assert "Question about project one" not in last_sql_prompt

    def test_unknown_persona_persists_nothing(self, orchestrator):
        with pytest.raises(PersonaNotFoundError):
            orchestrator.run_turn("Issue count", project_id="proj-1", persona_id="nope")
        assert orchestrator.history() == []

    def test_blank_question_is_refused(self, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.run_turn("   ", project_id="proj-1")

    def test_clear_history(self, orchestrator):
        orchestrator.run_turn("Issue count by status", project_id="proj-1")
        assert orchestrator.clear_history("proj-1") == 2
        assert orchestrator.history("proj-1") == []


class TestFeedbackFlow:
    def test_feedback_and_stats(self, orchestrator):
        turn = orchestrator.submit_turn("Issue count by status", project_id="proj-1")
        orchestrator.submit_feedback(turn.id, "Positive")

        stats = orchestrator.get_stats(StatsFilter(project_id="proj-1"))
        assert stats.total == 1
        assert stats.positive == 1
        assert stats.positive_rate == 100.0
        assert stats.avg_processing_time_ms == round(turn.processing_time_ms, 1)

        [entry] = orchestrator.list_feedback()
        assert entry.turn_id == turn.id
        assert entry.rating == FeedbackRating.POSITIVE
        assert entry.user_query == "Issue count by status"

    def test_feedback_on_unknown_turn(self, orchestrator):
        with pytest.raises(TurnNotFound):
            orchestrator.submit_feedback("ghost-turn", "positive")
        assert orchestrator.get_stats().total == 0


def test_default_personas_are_seeded_once(config, stub_generator):
    ChatOrchestrator(config, stub_generator)
    second = ChatOrchestrator(config, stub_generator)
    personas = second.persona_store.list_personas()
    assert len(personas) == 3
    assert sum(p.is_default for p in personas) == 1
