"""
Field mapping between Event attributes and Notion database properties.

The core fields (title, date, description, location and the gcal_event_id
link) are always known. The extended fields form a closed enumeration,
OptionalField, each member carrying its own extractor.
"""

from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from enum import Enum
from operator import attrgetter

from gcal_notion_sync.errors import ValidationError
from gcal_notion_sync.models import Event


class PropertyType(str, Enum):
    TITLE = "title"
    RICH_TEXT = "rich_text"
    NUMBER = "number"
    DATE = "date"
    CHECKBOX = "checkbox"
    URL = "url"
    SELECT = "select"


class OptionalField(Enum):
    """Independently toggle-able extended fields."""

    REMINDERS = ("reminders", attrgetter("reminders"))
    ATTENDEES = ("attendees", attrgetter("attendees"))
    ORGANIZER = ("organizer", attrgetter("organizer"))
    CONFERENCE_LINK = ("conference_link", attrgetter("conference_link"))
    RECURRENCE = ("recurrence", attrgetter("recurrence"))
    COLOR = ("color", attrgetter("color"))
    VISIBILITY = ("visibility", attrgetter("visibility"))

    def __init__(self, key, extractor):
        self.key = key
        self.extractor = extractor

    def extract(self, event: Event):
        """Return the field's value on ``event``, or None when it is empty."""
        value = self.extractor(event)
        if value is None or value == "" or value == []:
            return None
        return value

    @classmethod
    def from_key(cls, key: str) -> "OptionalField":
        normalized = key.strip().lower().replace("-", "_")
        for member in cls:
            if member.key == normalized:
                return member
        valid = ", ".join(m.key for m in cls)
        raise ValidationError(f"Unknown field '{key}' (expected one of: {valid})")


@dataclass(frozen=True)
class FieldConfig:
    enabled: bool
    property_name: str
    property_type: PropertyType
    required: bool = False


CORE_FIELDS = ("title", "date", "description", "location", "gcal_event_id")

DEFAULT_CORE_CONFIG = {
    "title": FieldConfig(True, "Title", PropertyType.TITLE, required=True),
    "date": FieldConfig(True, "Date", PropertyType.DATE, required=True),
    "description": FieldConfig(True, "Description", PropertyType.RICH_TEXT),
    "location": FieldConfig(True, "Location", PropertyType.RICH_TEXT),
    # The link property is written even when disabled; see FieldMapping.
    "gcal_event_id": FieldConfig(True, "GCal Event ID", PropertyType.RICH_TEXT),
}

DEFAULT_OPTIONAL_CONFIG = {
    OptionalField.REMINDERS: FieldConfig(False, "Reminders", PropertyType.NUMBER),
    OptionalField.ATTENDEES: FieldConfig(False, "Attendees", PropertyType.RICH_TEXT),
    OptionalField.ORGANIZER: FieldConfig(False, "Organizer", PropertyType.RICH_TEXT),
    OptionalField.CONFERENCE_LINK: FieldConfig(False, "Conference Link", PropertyType.URL),
    OptionalField.RECURRENCE: FieldConfig(False, "Recurrence", PropertyType.RICH_TEXT),
    OptionalField.COLOR: FieldConfig(False, "Color", PropertyType.SELECT),
    OptionalField.VISIBILITY: FieldConfig(False, "Visibility", PropertyType.SELECT),
}


@dataclass
class FieldMapping:
    """Read-only view of which fields sync and under which property names."""

    core: dict[str, FieldConfig] = field(default_factory=lambda: dict(DEFAULT_CORE_CONFIG))
    optional: dict[OptionalField, FieldConfig] = field(
        default_factory=lambda: dict(DEFAULT_OPTIONAL_CONFIG)
    )

    def core_config(self, name: str) -> FieldConfig:
        return self.core[name]

    def is_core_enabled(self, name: str) -> bool:
        cfg = self.core[name]
        # The link property is never switched off.
        return cfg.enabled or cfg.required or name == "gcal_event_id"

    def is_enabled(self, opt: OptionalField) -> bool:
        return self.optional[opt].enabled

    def enabled_optional(self) -> list[OptionalField]:
        return [opt for opt in OptionalField if self.optional[opt].enabled]

    def with_options(
        self,
        enabled: dict[OptionalField, bool] | None = None,
        names: dict[str, str] | None = None,
    ) -> "FieldMapping":
        """Return a copy with toggles and property names overridden."""
        core = dict(self.core)
        optional = dict(self.optional)
        for opt, on in (enabled or {}).items():
            optional[opt] = replace(optional[opt], enabled=on)
        for key, name in (names or {}).items():
            if key in core:
                core[key] = replace(core[key], property_name=name)
            else:
                opt = OptionalField.from_key(key)
                optional[opt] = replace(optional[opt], property_name=name)
        return FieldMapping(core=core, optional=optional)
