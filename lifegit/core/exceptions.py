"""Custom exception hierarchy for LifeGit.

All exceptions inherit from LifeGitError so callers can catch broadly
or narrowly as needed.
"""


class LifeGitError(Exception):
    """Base exception for all LifeGit errors."""


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------

class ValidationError(LifeGitError):
    """Rejected user input (name length, empty commit message, bad task fields)."""


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class LifecycleError(LifeGitError):
    """Branch lifecycle operation refused."""


class InvalidStateError(LifecycleError):
    """Transition not allowed from the branch's current state."""

    def __init__(self, message: str, current_state: str | None = None):
        self.current_state = current_state
        super().__init__(message)


class MasterNotFoundError(LifecycleError):
    """No master branch exists to merge into."""


class NoTaskPlanError(LifecycleError):
    """Branch has no task plan to operate on."""


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class RepositoryError(LifeGitError):
    """Failed persistence operation."""


class EntityNotFoundError(RepositoryError):
    """Referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class SchemaInitError(RepositoryError):
    """Failed to initialize database schema."""


class ConnectionError(RepositoryError):
    """Failed to connect to database."""


# ---------------------------------------------------------------------------
# AI service
# ---------------------------------------------------------------------------

class AIServiceError(LifeGitError):
    """Failed call to the completion service."""


class NetworkError(AIServiceError):
    """Transport failure or timeout talking to the completion service."""


class AuthenticationError(AIServiceError):
    """Invalid API key or unauthorized."""


class RateLimitError(AIServiceError):
    """Hit API rate limit."""


class ServerError(AIServiceError):
    """Completion service returned a 5xx."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class BadRequestError(AIServiceError):
    """Completion service rejected the request payload."""


# ---------------------------------------------------------------------------
# Task plan output
# ---------------------------------------------------------------------------

class PlanGenerationError(LifeGitError):
    """The completion service answered, but not with a usable plan."""


class ParsingError(PlanGenerationError):
    """Response could not be decoded into the task plan schema."""


class PlanValidationError(PlanGenerationError, ValidationError):
    """Decoded task plan violates content rules."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigError(LifeGitError):
    """Invalid or missing configuration."""
