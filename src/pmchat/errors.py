"""Exception taxonomy for the chat pipeline.

Every pipeline stage raises one of these. The orchestrator catches the
stage failures and turns them into a persisted turn carrying an error
message; only configuration problems, unknown personas and unknown turns
reach the caller.
"""


class PmChatError(Exception):
    """Base class for all pmchat errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(PmChatError):
    """The assistant is misconfigured (e.g. no default persona)."""


class PersonaNotFoundError(PmChatError):
    """An explicit persona id did not resolve."""

    def __init__(self, persona_id: str):
        super().__init__(f"Persona not found: {persona_id}", {"persona_id": persona_id})
        self.persona_id = persona_id


class PersonaError(PmChatError):
    """A persona write was refused (e.g. deleting the default persona)."""


class SqlGenerationFailure(PmChatError):
    """The generator produced no parseable SQL."""

    def __init__(self, message: str, raw_response: str | None = None, elapsed_ms: float = 0.0):
        super().__init__(message, {"raw_response": (raw_response or "")[:500]})
        self.raw_response = raw_response
        self.elapsed_ms = elapsed_ms


class UnsafeSqlRejected(PmChatError):
    """The SQL guard refused a statement. It was never executed."""

    def __init__(self, reason: str, sql: str = ""):
        super().__init__(f"Query rejected by safety policy: {reason}", {"sql": sql})
        self.reason = reason
        self.sql = sql


class QueryTimeout(PmChatError):
    """The statement exceeded the execution timeout."""

    def __init__(self, timeout_seconds: float, elapsed_ms: float = 0.0):
        super().__init__(f"Query timed out after {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds
        self.elapsed_ms = elapsed_ms


class QueryExecutionError(PmChatError):
    """The data store failed the statement.

    ``message`` is already sanitized and safe to show to users. The raw
    driver error is logged at the raise site and never stored here.
    """

    def __init__(self, user_message: str, error_kind: str = "other", elapsed_ms: float = 0.0):
        super().__init__(user_message, {"error_kind": error_kind})
        self.error_kind = error_kind
        self.elapsed_ms = elapsed_ms


class AnalysisGenerationFailure(PmChatError):
    """The second generation call failed or returned nothing usable."""


class TurnNotFound(PmChatError):
    """Feedback referenced a turn id that does not exist."""

    def __init__(self, turn_id: str):
        super().__init__(f"Turn not found: {turn_id}", {"turn_id": turn_id})
        self.turn_id = turn_id
