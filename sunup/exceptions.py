"""Exception hierarchy for Sunup.

Every failure kind carries a stable message prefix so callers can
pattern-match on it (``Unauthorized``, ``Forbidden:``, ``Cannot skip stages``).
"""

from __future__ import annotations


class SunupError(Exception):
    """Base exception for all Sunup errors."""


class ConfigError(SunupError):
    """Raised when configuration is invalid."""


class Unauthenticated(SunupError):
    """Raised when no verified caller identity is present."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class PrincipalNotFound(SunupError):
    """Raised when the identity is verified but not provisioned as a user."""

    def __init__(self, message: str = "User not found") -> None:
        super().__init__(message)


class Forbidden(SunupError):
    """Raised when the caller lacks the required role or permission."""

    def __init__(self, message: str = "Forbidden") -> None:
        if not message.startswith("Forbidden"):
            message = f"Forbidden: {message}"
        super().__init__(message)


class CrossTenantAccess(Forbidden):
    """Raised when a write targets a record owned by another tenant."""

    def __init__(self, resource: str = "record") -> None:
        self.resource = resource
        super().__init__(
            f"Forbidden: cannot access/modify {resource} records belonging to another tenant"
        )


class NotFound(SunupError):
    """Raised when a referenced entity does not exist (or is not visible)."""

    def __init__(self, resource: str, message: str | None = None) -> None:
        self.resource = resource
        super().__init__(message or f"{resource.capitalize()} not found")


class ValidationError(SunupError):
    """Raised on malformed input or a duplicate unique key."""


class PipelineError(SunupError):
    """Base for pipeline business-rule violations."""


class InvalidStage(PipelineError):
    """Raised when the target stage is not an active stage of the tenant."""

    def __init__(self, stage: str) -> None:
        self.stage = stage
        super().__init__(f'Invalid stage: "{stage}"')


class StageSkipped(PipelineError):
    """Raised on a forward transition that bypasses intermediate stages."""

    def __init__(self, to_stage: str, skipped: list[str]) -> None:
        self.to_stage = to_stage
        self.skipped = skipped
        super().__init__(
            f"Cannot skip stages. You must move through: {', '.join(skipped)} "
            f"before reaching {to_stage}"
        )


class StageInUse(PipelineError):
    """Raised when deactivating a stage that people currently occupy."""

    def __init__(self, stage: str) -> None:
        self.stage = stage
        super().__init__(
            f'Cannot deactivate stage "{stage}" because there are people currently '
            "in this stage. Move them to another stage first."
        )


class EventEmissionFailure(SunupError):
    """Raised by the event emitter; caught and logged by its callers."""
