"""unsend - silent deletion and edit tracker for a chat message store."""

__version__ = "0.1.0"
