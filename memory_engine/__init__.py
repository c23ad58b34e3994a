"""Memory consolidation, retrieval and session continuity for conversational assistants."""

__version__ = "0.1.0"
