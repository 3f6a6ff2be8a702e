"""
PF2e Character Engine - Custom Error Types
Structured exceptions and typed warnings for the derivation engine.

The core never raises for data it cannot fully interpret: illegal commits
come back as `IllegalCommit` rejection records and soft problems as typed
warnings. Exceptions are raised only by the HTTP adapter (which turns a
rejection into `IllegalCommitError`) and for malformed snapshot shapes.
"""
from dataclasses import dataclass, field
from typing import Dict, Any, Optional
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for the engine."""
    # General errors
    UNKNOWN = "UNKNOWN"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"

    # Commit rejections
    SLOT_GRANTED = "SLOT_GRANTED"
    DEDICATION_LOCKED = "DEDICATION_LOCKED"
    CHOICES_INCOMPLETE = "CHOICES_INCOMPLETE"
    CHOICE_INVALID = "CHOICE_INVALID"
    PREREQUISITES_UNMET = "PREREQUISITES_UNMET"
    ALREADY_HELD = "ALREADY_HELD"
    ENTRY_NOT_FOUND = "ENTRY_NOT_FOUND"
    INVALID_BOOST = "INVALID_BOOST"

    # Snapshot errors
    SNAPSHOT_MALFORMED = "SNAPSHOT_MALFORMED"


class WarningCode(str, Enum):
    """Codes for recoverable, non-fatal engine warnings."""
    UNPARSEABLE_PREREQUISITE = "UNPARSEABLE_PREREQUISITE"
    UNRESOLVED_DYNAMIC_GRANT = "UNRESOLVED_DYNAMIC_GRANT"
    UNKNOWN_CATALOG_ENTRY = "UNKNOWN_CATALOG_ENTRY"
    EXCESS_INT_BONUS_SKILL = "EXCESS_INT_BONUS_SKILL"
    EXCESS_MANUAL_SKILL = "EXCESS_MANUAL_SKILL"


class GameError(Exception):
    """
    Base exception for all engine errors.

    Provides structured error information with:
    - Error code for programmatic handling
    - Human-readable message
    - Additional context details
    - Recovery hints for the frontend
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.UNKNOWN,
        message: str = "An unexpected error occurred",
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
        recovery_hint: Optional[str] = None,
        http_status: int = 500
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        self.recovery_hint = recovery_hint
        self.http_status = http_status

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for JSON response."""
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details,
                "recoverable": self.recoverable,
                "recovery_hint": self.recovery_hint
            }
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code.value}, message={self.message!r})"


# =============================================================================
# Commit Rejections
# =============================================================================

@dataclass(frozen=True)
class IllegalCommit:
    """A structured rejection of a commit request."""
    code: ErrorCode
    reason: str
    catalog_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "reason": self.reason,
            "catalog_id": self.catalog_id,
            "details": dict(self.details),
        }


_REJECTION_HINTS: Dict[ErrorCode, str] = {
    ErrorCode.SLOT_GRANTED: "Remove the feature that granted this slot first",
    ErrorCode.DEDICATION_LOCKED: "Take more feats from your current archetype first",
    ErrorCode.CHOICES_INCOMPLETE: "Resolve every choice before confirming",
    ErrorCode.CHOICE_INVALID: "Pick one of the offered options",
    ErrorCode.PREREQUISITES_UNMET: "Meet the listed prerequisites or pick another feat",
    ErrorCode.ALREADY_HELD: "Remove the copy you already have or pick another feat",
    ErrorCode.ENTRY_NOT_FOUND: "Refresh the catalog and try again",
    ErrorCode.INVALID_BOOST: "Check the number of boosts and the level they apply to",
}


class IllegalCommitError(GameError):
    """Raised by the HTTP adapter when the core rejects a commit."""

    def __init__(self, rejection: IllegalCommit):
        details = dict(rejection.details)
        if rejection.catalog_id:
            details["catalog_id"] = rejection.catalog_id
        super().__init__(
            code=rejection.code,
            message=rejection.reason,
            details=details,
            http_status=409,
            recovery_hint=_REJECTION_HINTS.get(rejection.code)
        )
        self.rejection = rejection


# =============================================================================
# Snapshot Errors
# =============================================================================

class MalformedSnapshotError(GameError):
    """Raised when a snapshot payload has the wrong shape (programmer error)."""

    def __init__(self, field_name: str, reason: str):
        super().__init__(
            code=ErrorCode.SNAPSHOT_MALFORMED,
            message=f"Malformed snapshot field '{field_name}': {reason}",
            details={"field": field_name},
            recoverable=False,
            http_status=422
        )


# =============================================================================
# Validation Error
# =============================================================================

class ValidationError(GameError):
    """Input validation errors."""

    def __init__(self, field: str, message: str, value: Any = None):
        details = {"field": field}
        if value is not None:
            details["value"] = str(value)
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=message,
            details=details,
            http_status=400,
            recovery_hint=f"Check the value for '{field}'"
        )


class NotFoundError(GameError):
    """Generic not found error."""

    def __init__(self, resource: str, identifier: Optional[str] = None):
        details = {"resource": resource}
        if identifier:
            details["identifier"] = identifier
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=f"{resource} not found",
            details=details,
            http_status=404
        )


# =============================================================================
# Engine Warnings
# =============================================================================

@dataclass(frozen=True)
class EngineWarning:
    """Base record for recoverable problems surfaced alongside results."""
    code: WarningCode
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code.value, "message": self.message}


@dataclass(frozen=True)
class UnparseablePrerequisite(EngineWarning):
    """Prerequisite text that matched no known pattern; treated as met."""
    text: str = ""
    catalog_id: Optional[str] = None


@dataclass(frozen=True)
class UnresolvedDynamicGrant(EngineWarning):
    """A grant referenced a choice flag that had no committed value."""
    granter_id: str = ""
    choice_flag: str = ""


@dataclass(frozen=True)
class UnknownCatalogEntry(EngineWarning):
    """A selection references a catalog id the catalog does not know."""
    catalog_id: str = ""


@dataclass(frozen=True)
class ExcessIntBonusSkill(EngineWarning):
    """More INT-bonus skills were recorded at a level than INT boosts allow."""
    level: int = 0
    skill: str = ""


@dataclass(frozen=True)
class ExcessManualSkill(EngineWarning):
    """More manually trained skills were recorded than the class and INT allow."""
    skill: str = ""
    capacity: int = 0


def unparseable_prerequisite(text: str, catalog_id: Optional[str] = None) -> UnparseablePrerequisite:
    return UnparseablePrerequisite(
        code=WarningCode.UNPARSEABLE_PREREQUISITE,
        message=f"Could not interpret prerequisite '{text}'; assumed satisfied",
        text=text,
        catalog_id=catalog_id,
    )


def unresolved_dynamic_grant(granter_id: str, choice_flag: str) -> UnresolvedDynamicGrant:
    return UnresolvedDynamicGrant(
        code=WarningCode.UNRESOLVED_DYNAMIC_GRANT,
        message=f"'{granter_id}' grants the value of choice '{choice_flag}', which is not set",
        granter_id=granter_id,
        choice_flag=choice_flag,
    )


def unknown_catalog_entry(catalog_id: str) -> UnknownCatalogEntry:
    return UnknownCatalogEntry(
        code=WarningCode.UNKNOWN_CATALOG_ENTRY,
        message=f"Unknown catalog entry '{catalog_id}'",
        catalog_id=catalog_id,
    )


def excess_int_bonus_skill(level: int, skill: str) -> ExcessIntBonusSkill:
    return ExcessIntBonusSkill(
        code=WarningCode.EXCESS_INT_BONUS_SKILL,
        message=f"INT bonus skill '{skill}' at level {level} exceeds the INT boosts taken there",
        level=level,
        skill=skill,
    )


def excess_manual_skill(skill: str, capacity: int) -> ExcessManualSkill:
    return ExcessManualSkill(
        code=WarningCode.EXCESS_MANUAL_SKILL,
        message=f"Manually trained skill '{skill}' exceeds the {capacity} trained skill slots available",
        skill=skill,
        capacity=capacity,
    )
