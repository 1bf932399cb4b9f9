"""HTTP API for the chat assistant."""

from pmchat.api.server import create_app

__all__ = ["create_app"]
