"""FastAPI backend for the chat assistant.

Wraps the persona → SQL → guard → execute → shape → analyse pipeline and
the feedback/statistics read model in a stable JSON contract.
"""

import logging
from datetime import date
from typing import Any

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator

from pmchat import __version__
from pmchat.config import AssistantConfig
from pmchat.contracts import FeedbackDetail, FeedbackRating, Persona, StatsFilter
from pmchat.errors import ConfigurationError, PersonaError, PersonaNotFoundError, TurnNotFound
from pmchat.llm.client import TextGenerator
from pmchat.orchestrator.runtime import ChatOrchestrator

_LOGGER = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    """Request to ask a question."""
    question: str = Field(..., min_length=1, description="Natural language question")
    project_id: str | None = Field(None, description="Project scope; omit for cross-project questions")
    persona_id: str | None = Field(None, description="Persona to answer with; omit for the default")


class FeedbackRequest(FeedbackDetail):
    """Rating for an assistant turn."""
    turn_id: str = Field(..., min_length=1)
    rating: str = Field(..., description="positive, negative or neutral (any case)")

    @field_validator("rating")
    @classmethod
    def validate_rating(cls, v: str) -> str:
        try:
            return FeedbackRating(v).value
        except ValueError as e:
            raise ValueError("rating must be positive, negative or neutral") from e


class PersonaCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    system_prompt: str = Field(..., min_length=1)
    description: str | None = None
    icon: str | None = None
    is_default: bool = False


class PersonaUpdateRequest(BaseModel):
    name: str | None = None
    system_prompt: str | None = None
    description: str | None = None
    icon: str | None = None
    is_default: bool | None = None


class SuggestionRequest(BaseModel):
    project_id: str | None = None


def _stats_filter(
    start_date: date | None,
    end_date: date | None,
    project_id: str | None,
    rating: str | None,
) -> StatsFilter:
    try:
        return StatsFilter(
            start_date=start_date,
            end_date=end_date,
            project_id=project_id or None,
            rating=FeedbackRating(rating) if rating else None,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


def _persona_json(persona: Persona) -> dict[str, Any]:
    return persona.model_dump(mode="json")


def create_app(config: AssistantConfig | None = None, generator: TextGenerator | None = None) -> FastAPI:
    """Build the API around one orchestrator instance."""
    config = config or AssistantConfig.from_env()
    orchestrator = ChatOrchestrator(config, generator)

    app = FastAPI(title="pmchat API", version=__version__)
    app.state.orchestrator = orchestrator

    # CORS for local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "ok",
            "version": __version__,
            "data_db_exists": config.data_db_path.exists(),
        }

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    @app.post("/chat")
    def ask(request: ChatRequest):
        """Answer a question; returns the stored user and assistant turns."""
        if not request.question.strip():
            raise HTTPException(status_code=400, detail="Question cannot be empty")
        try:
            outcome = orchestrator.run_turn(
                request.question,
                project_id=request.project_id,
                persona_id=request.persona_id,
            )
        except PersonaNotFoundError as e:
            raise HTTPException(status_code=404, detail=e.message) from e
        except ConfigurationError as e:
            _LOGGER.error("Assistant misconfigured: %s", e.message)
            raise HTTPException(status_code=500, detail=e.message) from e
        return {
            "user_turn": outcome.user_turn.model_dump(mode="json"),
            "assistant_turn": outcome.turn.model_dump(mode="json"),
            "stages": [stage.value for stage in outcome.stages],
        }

    @app.get("/chat")
    def chat_history(project_id: str | None = None, limit: int = Query(50, ge=1, le=500)):
        turns = orchestrator.history(project_id or None, limit)
        return {"turns": [turn.model_dump(mode="json") for turn in turns]}

    @app.delete("/chat")
    def clear_chat(project_id: str | None = None):
        deleted = orchestrator.clear_history(project_id or None)
        return {"deleted": deleted}

    # ------------------------------------------------------------------
    # Feedback and statistics
    # ------------------------------------------------------------------

    @app.post("/chat/feedback", status_code=201)
    def submit_feedback(request: FeedbackRequest):
        detail = FeedbackDetail(**request.model_dump(include=set(FeedbackDetail.model_fields)))
        try:
            feedback = orchestrator.submit_feedback(request.turn_id, request.rating, detail)
        except TurnNotFound as e:
            raise HTTPException(status_code=404, detail=e.message) from e
        return feedback.model_dump(mode="json")

    @app.get("/chat/feedback")
    def list_feedback(
        rating: str | None = None,
        project_id: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
        include_stats: bool = True,
    ):
        flt = _stats_filter(start_date, end_date, project_id, rating)
        entries = orchestrator.list_feedback(flt, limit=limit, offset=offset)
        response: dict[str, Any] = {
            "feedback": [entry.model_dump(mode="json") for entry in entries],
            "total": orchestrator.turn_store.count_feedback(flt),
            "limit": limit,
            "offset": offset,
        }
        if include_stats:
            response["stats"] = orchestrator.get_stats(flt).model_dump()
        return response

    @app.get("/chat/stats")
    def feedback_stats(
        rating: str | None = None,
        project_id: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ):
        flt = _stats_filter(start_date, end_date, project_id, rating)
        return orchestrator.get_stats(flt).model_dump()

    @app.post("/chat/suggestions")
    def suggestions(request: SuggestionRequest | None = None):
        project_id = request.project_id if request else None
        return orchestrator.suggest(project_id).model_dump()

    # ------------------------------------------------------------------
    # Personas
    # ------------------------------------------------------------------

    @app.get("/personas")
    def list_personas():
        return {"personas": [_persona_json(p) for p in orchestrator.persona_store.list_personas()]}

    @app.post("/personas", status_code=201)
    def create_persona(request: PersonaCreateRequest):
        try:
            persona = orchestrator.persona_store.create_persona(**request.model_dump())
        except PersonaError as e:
            raise HTTPException(status_code=400, detail=e.message) from e
        return _persona_json(persona)

    @app.patch("/personas/{persona_id}")
    def update_persona(persona_id: str, request: PersonaUpdateRequest):
        changes = request.model_dump(exclude_unset=True)
        try:
            persona = orchestrator.persona_store.update_persona(persona_id, **changes)
        except PersonaNotFoundError as e:
            raise HTTPException(status_code=404, detail=e.message) from e
        except PersonaError as e:
            raise HTTPException(status_code=400, detail=e.message) from e
        return _persona_json(persona)

    @app.delete("/personas/{persona_id}")
    def delete_persona(persona_id: str):
        try:
            orchestrator.persona_store.delete_persona(persona_id)
        except PersonaNotFoundError as e:
            raise HTTPException(status_code=404, detail=e.message) from e
        except PersonaError as e:
            raise HTTPException(status_code=400, detail=e.message) from e
        return {"deleted": persona_id}

    @app.post("/personas/{persona_id}/default")
    def set_default_persona(persona_id: str):
        try:
            persona = orchestrator.persona_store.set_default(persona_id)
        except PersonaNotFoundError as e:
            raise HTTPException(status_code=404, detail=e.message) from e
        return _persona_json(persona)

    return app
