"""Custom exceptions for ctxforge."""


class CtxForgeError(Exception):
    """Base exception for all ctxforge errors."""


class ConfigError(CtxForgeError):
    """Configuration-related errors."""


class StoreError(CtxForgeError):
    """Workspace persistence errors."""


class ValidationError(CtxForgeError):
    """A caller-supplied argument is missing or out of range."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class FragmentNotFoundError(CtxForgeError):
    """A referenced fragment does not exist or belongs to another owner."""

    def __init__(self, fragment_id: str):
        self.fragment_id = fragment_id
        super().__init__(f"Fragment not found: {fragment_id}")


class CollaboratorError(CtxForgeError):
    """An external collaborator (store, index, embedder) failed.

    These are retryable: the engine never substitutes a degraded result.
    """

    retryable = True

    def __init__(self, collaborator: str, message: str):
        self.collaborator = collaborator
        super().__init__(f"{collaborator} failed: {message}")
