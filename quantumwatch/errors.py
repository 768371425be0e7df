"""Exception hierarchy shared by the stages, clients and CLI."""


class QuantumWatchError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(QuantumWatchError):
    """A stage cannot run because its configuration is missing or invalid."""


class CollaboratorError(QuantumWatchError):
    """An external service (feed server, LLM, TTS, Telegram) failed."""

    def __init__(self, collaborator: str, message: str, status: int | None = None):
        self.collaborator = collaborator
        self.status = status
        super().__init__(f"{collaborator}: {message}")


class OnDemandError(QuantumWatchError):
    """Failure of a user-triggered action, classified for the caller."""

    BAD_INPUT = "bad_input"
    NOT_FOUND = "not_found"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    INTERNAL = "internal"

    EXIT_CODES = {
        BAD_INPUT: 2,
        NOT_FOUND: 3,
        UPSTREAM_UNAVAILABLE: 4,
        INTERNAL: 1,
    }

    def __init__(self, kind: str, message: str):
        self.kind = kind
        self.message = message
        super().__init__(message)

    @property
    def exit_code(self) -> int:
        return self.EXIT_CODES.get(self.kind, 1)
