"""Timeline event model.

Every timestamped fact recorded on the device is one of the events below.
Sessions, monitoring periods and statistics are all rebuilt from this log;
nothing derived is ever written back.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class ServiceState(str, Enum):
    STARTED = "started"
    STOPPED = "stopped"


class PermissionKind(str, Enum):
    USAGE_ACCESS = "usage_access"
    OVERLAY = "overlay"
    NOTIFICATION = "notification"


class PermissionState(str, Enum):
    GRANTED = "granted"
    REVOKED = "revoked"


class ScreenState(str, Enum):
    ON = "on"
    OFF = "off"


class ServiceConfigKind(str, Enum):
    OVERLAY_ENABLED = "overlay_enabled"
    AUTO_START_ON_BOOT = "auto_start_on_boot"


class ServiceConfigState(str, Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"


class SuggestionDecision(str, Enum):
    SNOOZED = "snoozed"
    DISMISSED = "dismissed"
    DISABLED_FOR_SESSION = "disabled_for_session"


class _BaseEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp_ms: int


class ServiceLifecycleEvent(_BaseEvent):
    """The monitoring service started or stopped."""

    kind: Literal["service_lifecycle"] = "service_lifecycle"
    state: ServiceState


class ServiceConfigEvent(_BaseEvent):
    """A service configuration toggle. Informational only."""

    kind: Literal["service_config"] = "service_config"
    config: ServiceConfigKind
    state: ServiceConfigState
    meta: str | None = None


class PermissionEvent(_BaseEvent):
    kind: Literal["permission"] = "permission"
    permission: PermissionKind
    state: PermissionState


class ScreenEvent(_BaseEvent):
    kind: Literal["screen"] = "screen"
    state: ScreenState


class ForegroundAppEvent(_BaseEvent):
    """The foreground app changed. ``package_id=None`` means home/launcher."""

    kind: Literal["foreground_app"] = "foreground_app"
    package_id: str | None = None


class TargetAppsChangedEvent(_BaseEvent):
    kind: Literal["target_apps_changed"] = "target_apps_changed"
    target_packages: frozenset[str] = frozenset()


class SuggestionShownEvent(_BaseEvent):
    """A suggestion prompt was shown.

    ``package_id`` names the app the prompt was shown over. When it is
    missing the prompt belongs to the current foreground target.
    """

    kind: Literal["suggestion_shown"] = "suggestion_shown"
    suggestion_id: int
    package_id: str | None = None


class SuggestionDecisionEvent(_BaseEvent):
    kind: Literal["suggestion_decision"] = "suggestion_decision"
    suggestion_id: int
    decision: SuggestionDecision
    package_id: str | None = None


class SettingsChangedEvent(_BaseEvent):
    """A setting changed.

    Past events are always reinterpreted with the current settings, so the
    value here is only kept for display and debugging.
    """

    kind: Literal["settings_changed"] = "settings_changed"
    key: str
    description: str | None = None


TimelineEvent = Annotated[
    Union[
        ServiceLifecycleEvent,
        ServiceConfigEvent,
        PermissionEvent,
        ScreenEvent,
        ForegroundAppEvent,
        TargetAppsChangedEvent,
        SuggestionShownEvent,
        SuggestionDecisionEvent,
        SettingsChangedEvent,
    ],
    Field(discriminator="kind"),
]

EVENT_KINDS = frozenset(
    {
        "service_lifecycle",
        "service_config",
        "permission",
        "screen",
        "foreground_app",
        "target_apps_changed",
        "suggestion_shown",
        "suggestion_decision",
        "settings_changed",
    }
)

_event_adapter: TypeAdapter[TimelineEvent] = TypeAdapter(TimelineEvent)


def parse_event(data: dict[str, Any]) -> TimelineEvent:
    """Validate a dict into a timeline event.

    Raises:
        pydantic.ValidationError: If the kind is unknown or a field is invalid.
    """
    return _event_adapter.validate_python(data)


def parse_event_json(text: str | bytes) -> TimelineEvent:
    """Validate a JSON document into a timeline event."""
    return _event_adapter.validate_json(text)


def dump_event(event: TimelineEvent) -> dict[str, Any]:
    """Serialize an event to a JSON-compatible dict (including ``kind``)."""
    data = event.model_dump(mode="json")
    if isinstance(event, TargetAppsChangedEvent):
        data["target_packages"] = sorted(event.target_packages)
    return data


def sort_events(events: list[TimelineEvent]) -> list[TimelineEvent]:
    """Return events in timestamp order. Equal timestamps keep input order."""
    return sorted(events, key=lambda e: e.timestamp_ms)
