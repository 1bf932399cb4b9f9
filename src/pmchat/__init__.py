"""pmchat - conversational analytics over project-management data."""

__version__ = "0.4.0"
