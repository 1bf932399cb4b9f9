"""Turn, feedback and statistics storage."""

from pmchat.store.turn_store import TurnStore, new_turn_id

__all__ = ["TurnStore", "new_turn_id"]
