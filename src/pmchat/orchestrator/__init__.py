"""Chat pipeline orchestration."""

from pmchat.orchestrator.runtime import ChatOrchestrator, TurnOutcome, TurnStage

__all__ = ["ChatOrchestrator", "TurnOutcome", "TurnStage"]
