from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from dataclasses_json import DataClassJsonMixin, config
from marshmallow import ValidationError, fields


class NotificationType(StrEnum):
    DEPENDENCY = "dependency"


@dataclass
class DependencyNotification(DataClassJsonMixin):
    type: NotificationType = field(
        metadata=config(mm_field=fields.Enum(NotificationType, by_value=True, required=True))
    )
    path: str = field(metadata=config(mm_field=fields.Str(required=True)))


_NOTIFICATION_SCHEMA = DependencyNotification.schema()


def load_notification(parsed_json: Any) -> DependencyNotification | None:
    """
    Loads a decoded message as a notification, or None if it has any other shape.
    """

    if not isinstance(parsed_json, Mapping):
        return None
    if not isinstance(parsed_json, dict):
        parsed_json = dict(parsed_json)

    try:
        return _NOTIFICATION_SCHEMA.load(parsed_json, unknown="exclude")
    except (ValidationError, ValueError):
        # Unknown kinds are not errors
        return None
