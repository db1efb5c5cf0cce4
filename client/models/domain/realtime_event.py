"""
Realtime event envelope

Every WebSocket frame is a JSON object `{type, ...payload}`. The channel
parses frames into RealtimeEvent; controllers dispatch on `event.type`.
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class EventType(str, Enum):
    """Envelope types exchanged with the /ws endpoint"""

    # Server -> client: reports
    NEW_REPORT = "NEW_REPORT"
    REPORT_UPDATED = "REPORT_UPDATED"
    REPORT_DELETED = "REPORT_DELETED"
    REPORT_VERIFIED = "REPORT_VERIFIED"
    REPORT_REJECTED = "REPORT_REJECTED"
    REPORT_VERIFICATION = "REPORT_VERIFICATION"  # server form, carries `status`

    # Server -> client: users / notifications / aggregates
    NEW_USER = "NEW_USER"
    USER_UPDATED = "USER_UPDATED"
    NEW_NOTIFICATION = "NEW_NOTIFICATION"
    NOTIFICATION_COUNT_UPDATE = "NOTIFICATION_COUNT_UPDATE"
    ANALYTICS_UPDATE = "ANALYTICS_UPDATE"
    DASHBOARD_UPDATE = "dashboard_update"

    # Server -> client: connection lifecycle
    CONNECTED = "CONNECTED"
    AUTH_SUCCESS = "AUTH_SUCCESS"
    AUTH_ERROR = "AUTH_ERROR"
    ERROR = "ERROR"
    PONG = "PONG"

    # Client -> server control messages
    ADMIN_AUTH = "ADMIN_AUTH"
    USER_AUTH = "USER_AUTH"
    PING = "PING"


class MalformedEventError(ValueError):
    """Raised when a frame is not a JSON object with a string `type`"""
    pass


@dataclass(frozen=True)
class RealtimeEvent:
    """
    One envelope. `type` stays a plain string so unknown server types
    survive parsing; `known_type` maps it onto EventType when possible.
    """
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, raw: str) -> "RealtimeEvent":
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise MalformedEventError(f"Frame is not valid JSON: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Any) -> "RealtimeEvent":
        if not isinstance(data, dict):
            raise MalformedEventError(f"Frame must be a JSON object, got {type(data).__name__}")
        event_type = data.get('type')
        if not isinstance(event_type, str) or not event_type:
            raise MalformedEventError("Frame is missing a string 'type'")
        payload = {k: v for k, v in data.items() if k != 'type'}
        return cls(type=event_type, payload=payload)

    @classmethod
    def build(cls, event_type: EventType, **payload) -> "RealtimeEvent":
        return cls(type=event_type.value, payload=payload)

    @property
    def known_type(self) -> Optional[EventType]:
        try:
            return EventType(self.type)
        except ValueError:
            return None

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type, **self.payload}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)
