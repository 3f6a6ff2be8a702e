# API Models

from .requests import (
    SnapshotRequest,
    SelectRequest,
    RemoveRequest,
    AbilityBoostRequest,
    ChoicesRequest,
    OptionsRequest,
    PrerequisiteRequest,
    AvailableFeatsRequest,
    EditResponse,
)

__all__ = [
    "SnapshotRequest",
    "SelectRequest",
    "RemoveRequest",
    "AbilityBoostRequest",
    "ChoicesRequest",
    "OptionsRequest",
    "PrerequisiteRequest",
    "AvailableFeatsRequest",
    "EditResponse",
]
