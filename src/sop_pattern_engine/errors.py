"""
Domain errors raised by the pattern engine.

Read paths return None on a miss; operations that need an existing
entity raise NotFoundError. Illegal lifecycle transitions raise
ConflictError. Completion failures are always caught by their caller
and replaced by a deterministic fallback.
"""


class PatternEngineError(Exception):
    """Base class for all pattern engine errors."""


class NotFoundError(PatternEngineError):
    """A pattern or draft required by an operation does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class ConflictError(PatternEngineError):
    """A lifecycle transition is not allowed from the current status."""

    def __init__(self, entity: str, entity_id: str, current_status: str, requested: str):
        self.entity = entity
        self.entity_id = entity_id
        self.current_status = current_status
        self.requested = requested
        super().__init__(
            f"Cannot move {entity} {entity_id} from '{current_status}' to '{requested}'"
        )


class ValidationError(PatternEngineError, ValueError):
    """Caller supplied an argument that an operation must reject."""


class CompletionError(PatternEngineError):
    """The text completion capability failed or returned unusable output."""


class CompletionUnavailableError(CompletionError):
    """No text completion capability is configured."""
