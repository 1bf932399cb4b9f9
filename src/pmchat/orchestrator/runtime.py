"""Chat orchestrator: one sequential pipeline per question.

Stages run in a fixed order:
Persona → SQL generation → guard → execution → shaping → analysis → persist

Key features:
- Every stage failure is caught at its stage and ends in a persisted turn
  carrying ``error_message``; the user always gets an answer or a reason
- Only configuration problems and unknown personas reach the caller
- Each generation call and the SQL execution are timeout-bound
- Stage transitions are recorded on the outcome for tracing
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pmchat.config import AssistantConfig
from pmchat.contracts import (
    ChartType,
    Feedback,
    FeedbackDetail,
    FeedbackEntry,
    FeedbackRating,
    FeedbackStats,
    StatsFilter,
    Turn,
    TurnRole,
)
from pmchat.errors import QueryExecutionError, QueryTimeout, SqlGenerationFailure, UnsafeSqlRejected
from pmchat.explain.composer import AnalysisComposer
from pmchat.generation.sql_generator import SqlGenerator
from pmchat.generation.suggestions import SuggestionSet, build_project_context, suggest_questions
from pmchat.llm.client import RoutedTextGenerator, TextGenerator
from pmchat.personas.resolver import PersonaResolver
from pmchat.personas.store import PersonaStore
from pmchat.shaping.shaper import ShapedResult, chart_payload, shape_result
from pmchat.sql.guardrails import GuardrailConfig, guard_sql
from pmchat.sql.safe_executor import SafeSQLExecutor
from pmchat.store.turn_store import TurnStore, new_turn_id

_LOGGER = logging.getLogger(__name__)


class TurnStage(str, Enum):
    """Pipeline stages of one turn. Failure stages still end in PERSISTED."""

    RECEIVED = "received"
    PERSONA_RESOLVED = "persona_resolved"
    SQL_GENERATING = "sql_generating"
    SQL_GENERATED = "sql_generated"
    SQL_GEN_FAILED = "sql_gen_failed"
    SQL_VALIDATING = "sql_validating"
    SQL_REJECTED = "sql_rejected"
    SQL_EXECUTING = "sql_executing"
    EXEC_FAILED = "exec_failed"
    EXEC_TIMEOUT = "exec_timeout"
    RESULT_SHAPING = "result_shaping"
    ANALYSIS_COMPOSING = "analysis_composing"
    PERSISTED = "persisted"


FAILURE_STAGES = frozenset(
    {TurnStage.SQL_GEN_FAILED, TurnStage.SQL_REJECTED, TurnStage.EXEC_FAILED, TurnStage.EXEC_TIMEOUT}
)


@dataclass
class TurnOutcome:
    """Persisted assistant turn plus how it got there."""

    turn: Turn
    user_turn: Turn
    stages: list[TurnStage] = field(default_factory=list)
    shaped: ShapedResult | None = None
    used_fallback: bool = False

    @property
    def failed(self) -> bool:
        return any(stage in FAILURE_STAGES for stage in self.stages)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


class ChatOrchestrator:
    """Run chat turns end to end and expose feedback and statistics.

    Usage:
        orchestrator = ChatOrchestrator(AssistantConfig.from_env())
        turn = orchestrator.submit_turn("Issue count by status as a chart", project_id="p1")
    """

    def __init__(
        self,
        config: AssistantConfig | None = None,
        generator: TextGenerator | None = None,
        *,
        persona_store: PersonaStore | None = None,
        turn_store: TurnStore | None = None,
        executor: SafeSQLExecutor | None = None,
    ):
        self.config = config or AssistantConfig.from_env()
        if generator is None:
            overrides = {"sql": self.config.sql_model, "analysis": self.config.analysis_model}
            generator = RoutedTextGenerator(
                provider=self.config.llm_provider,
                model_overrides={role: model for role, model in overrides.items() if model},
            )
        self.generator = generator

        self.persona_store = persona_store or PersonaStore(self.config.store_db_path)
        seeded = self.persona_store.seed_defaults()
        if seeded:
            _LOGGER.info("Seeded %d built-in personas", seeded)
        self.turn_store = turn_store or TurnStore(self.config.store_db_path)

        self.guard_config = GuardrailConfig(
            max_result_rows=self.config.max_rows,
            query_timeout_seconds=self.config.sql_timeout_seconds,
        )
        self.executor = executor or SafeSQLExecutor(self.config.data_db_path, self.guard_config)
        self.resolver = PersonaResolver(
            self.persona_store,
            sql_prompt_override=self.config.sql_prompt_override,
            analysis_prompt_override=self.config.analysis_prompt_override,
        )
        self.sql_generator = SqlGenerator(
            self.generator,
            timeout_seconds=self.config.sql_gen_timeout_seconds,
            history_turns=self.config.history_turns,
        )
        self.composer = AnalysisComposer(self.generator, timeout_seconds=self.config.analysis_timeout_seconds)

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    def run_turn(
        self,
        question: str,
        project_id: str | None = None,
        persona_id: str | None = None,
    ) -> TurnOutcome:
        """Run the full pipeline for one question and persist both turns.

        Raises:
            ValueError: If the question is blank
            ConfigurationError: If no single default persona exists
            PersonaNotFoundError: If ``persona_id`` is unknown
        """
        question = (question or "").strip()
        if not question:
            raise ValueError("Question must not be empty")
        project_id = project_id or None

        start = time.perf_counter()
        stages: list[TurnStage] = []
        turn_id = new_turn_id()

        def advance(stage: TurnStage) -> None:
            stages.append(stage)
            _LOGGER.debug("Turn %s -> %s", turn_id, stage.value)

        advance(TurnStage.RECEIVED)
        prompts = self.resolver.resolve(persona_id)
        advance(TurnStage.PERSONA_RESOLVED)

        history = self.turn_store.recent_history(project_id, self.config.history_turns)
        user_turn = self.turn_store.record_turn(
            Turn(
                id=new_turn_id(),
                role=TurnRole.USER,
                content=question,
                user_query=question,
                project_id=project_id,
                created_at=_utc_now(),
            )
        )

        sql: str | None = None
        sql_gen_ms: float | None = None
        sql_exec_ms: float | None = None
        error: str | None = None
        shaped: ShapedResult | None = None

        advance(TurnStage.SQL_GENERATING)
        try:
            generated = self.sql_generator.generate(question, history, project_id, prompts)
        except SqlGenerationFailure as e:
            sql_gen_ms = e.elapsed_ms
            error = e.message
            _LOGGER.warning("SQL generation failed for turn %s: %s", turn_id, e.message)
            advance(TurnStage.SQL_GEN_FAILED)
        else:
            sql_gen_ms = generated.elapsed_ms
            sql = generated.sql
            advance(TurnStage.SQL_GENERATED)

        if error is None and sql is not None:
            advance(TurnStage.SQL_VALIDATING)
            try:
                guard_sql(sql, project_id, self.executor.config)
            except UnsafeSqlRejected as e:
                error = e.message
                _LOGGER.warning("Rejected SQL for turn %s (%s): %s", turn_id, e.reason, sql)
                advance(TurnStage.SQL_REJECTED)

        if error is None and sql is not None:
            advance(TurnStage.SQL_EXECUTING)
            try:
                result = self.executor.execute(sql, project_id=project_id)
            except QueryTimeout as e:
                sql_exec_ms = e.elapsed_ms
                error = e.message
                advance(TurnStage.EXEC_TIMEOUT)
            except QueryExecutionError as e:
                sql_exec_ms = e.elapsed_ms
                error = e.message
                advance(TurnStage.EXEC_FAILED)
            except UnsafeSqlRejected as e:
                error = e.message
                advance(TurnStage.SQL_REJECTED)
            else:
                sql_exec_ms = result.execution_time_ms
                advance(TurnStage.RESULT_SHAPING)
                shaped = shape_result(result.rows, result.columns, generated.suggested_chart_type, result.truncated)

        if error is None:
            advance(TurnStage.ANALYSIS_COMPOSING)
        composed = self.composer.compose(question, shaped, sql, prompts, error=error)

        payload = chart_payload(shaped) if shaped is not None and error is None else {"chart_type": ChartType.NONE}
        turn = Turn(
            id=turn_id,
            role=TurnRole.ASSISTANT,
            content=composed.text,
            sql_query=sql,
            user_query=question,
            processing_time_ms=_elapsed_ms(start),
            sql_gen_time_ms=sql_gen_ms,
            sql_exec_time_ms=sql_exec_ms,
            error_message=error,
            project_id=project_id,
            created_at=_utc_now(),
            **payload,
        )
        self.turn_store.record_turn(turn)
        advance(TurnStage.PERSISTED)
        _LOGGER.info(
            "Turn %s finished in %.0f ms (chart=%s, error=%s)",
            turn_id,
            turn.processing_time_ms,
            turn.chart_type.value,
            bool(error),
        )
        return TurnOutcome(
            turn=turn,
            user_turn=user_turn,
            stages=stages,
            shaped=shaped,
            used_fallback=composed.used_fallback,
        )

    def submit_turn(self, question: str, project_id: str | None = None, persona_id: str | None = None) -> Turn:
        """Run one question and return the persisted assistant turn."""
        return self.run_turn(question, project_id=project_id, persona_id=persona_id).turn

    def history(self, project_id: str | None = None, limit: int = 50) -> list[Turn]:
        return self.turn_store.list_turns(project_id, limit)

    def clear_history(self, project_id: str | None = None) -> int:
        return self.turn_store.delete_turns(project_id)

    # ------------------------------------------------------------------
    # Feedback and statistics
    # ------------------------------------------------------------------

    def submit_feedback(
        self,
        turn_id: str,
        rating: FeedbackRating | str,
        detail: FeedbackDetail | None = None,
    ) -> Feedback:
        """Attach a rating to a stored turn.

        Raises:
            TurnNotFound: If the turn does not exist
        """
        return self.turn_store.attach_feedback(turn_id, rating, detail)

    def list_feedback(self, flt: StatsFilter | None = None, limit: int = 50, offset: int = 0) -> list[FeedbackEntry]:
        return self.turn_store.list_feedback(flt, limit=limit, offset=offset)

    def get_stats(self, flt: StatsFilter | None = None) -> FeedbackStats:
        return self.turn_store.compute_stats(flt)

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def suggest(self, project_id: str | None = None) -> SuggestionSet:
        context = build_project_context(self.config.data_db_path, project_id)
        return suggest_questions(self.generator, context, timeout=self.config.sql_gen_timeout_seconds)
