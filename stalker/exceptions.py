"""Exception types for the score-ingestion pipeline and its stores."""


class RecognitionError(Exception):
    """Raised when the OCR engine fails on a single image.

    The session records the message on that image's result and keeps going.

    Args:
        source: The file or image identifier that failed.
        reason: Text of the underlying engine error.
    """

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Text recognition failed for '{source}': {reason}")


class StorageError(Exception):
    """Raised when a critical data file cannot be read or written.

    Args:
        path: The file that failed.
        reason: Human readable explanation.
    """

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Storage failure on '{path}': {reason}")


class ServerNotConfiguredError(Exception):
    """Raised when a guild is missing or disabled in servers.json."""

    def __init__(self, guild_id: str) -> None:
        self.guild_id = guild_id
        super().__init__(
            f"Bot is not configured for server {guild_id}. Check servers.json configuration."
        )
