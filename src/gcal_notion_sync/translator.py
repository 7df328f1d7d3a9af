"""
Conversion between the neutral Event and each remote system's native shape.

Google Calendar payloads are event resources as returned by the Calendar v3
API; Notion payloads are page objects from a database query. Converters never
raise on malformed input: they log a warning and return None so that one bad
record cannot abort a batch.
"""

import logging
from collections.abc import Callable
from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import timezone

from gcal_notion_sync.fields import CORE_FIELDS
from gcal_notion_sync.fields import FieldMapping
from gcal_notion_sync.fields import OptionalField
from gcal_notion_sync.fields import PropertyType
from gcal_notion_sync.models import EVENT_STATUSES
from gcal_notion_sync.models import VISIBILITIES
from gcal_notion_sync.models import Event
from gcal_notion_sync.models import Source
from gcal_notion_sync.models import SyncDirection
from gcal_notion_sync.rrule import parse_rrule

logger = logging.getLogger(__name__)

# extendedProperties.private key holding the linked Notion page id.
NOTION_LINK_KEY = "notion_page_id"

GCAL_COLORS = {
    "1": "Lavender",
    "2": "Sage",
    "3": "Grape",
    "4": "Flamingo",
    "5": "Banana",
    "6": "Tangerine",
    "7": "Peacock",
    "8": "Graphite",
    "9": "Blueberry",
    "10": "Basil",
    "11": "Tomato",
}
_COLOR_IDS = {name: cid for cid, name in GCAL_COLORS.items()}

NOTION_TEXT_LIMIT = 2000

AttendeeCheck = Callable[[dict], bool]


def attendee_is_self(attendee: dict) -> bool:
    """Default self-identity check: the API flags the authenticated attendee."""
    return bool(attendee.get("self"))


# ---------------------------------------------------------------------------
# Datetime helpers
# ---------------------------------------------------------------------------


def parse_datetime(value: str) -> datetime:
    """Parse an ISO date or datetime string into an aware UTC-normalized datetime.

    Date-only strings map to UTC midnight.
    """
    value = value.strip()
    if len(value) == 10:
        return datetime.combine(date.fromisoformat(value), datetime.min.time(), timezone.utc)
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _format_instant(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _gcal_time(block: dict | None) -> datetime | None:
    if not block:
        return None
    if block.get("dateTime"):
        return parse_datetime(block["dateTime"])
    if block.get("date"):
        return parse_datetime(block["date"])
    return None


# ---------------------------------------------------------------------------
# Google Calendar
# ---------------------------------------------------------------------------


def _attendee_name(attendee: dict) -> str:
    if attendee.get("displayName"):
        return attendee["displayName"]
    email = attendee.get("email") or ""
    if email:
        return email.split("@", 1)[0]
    return "Unknown"


def _conference_link(item: dict) -> str | None:
    entry_points = (item.get("conferenceData") or {}).get("entryPoints") or []
    for entry in entry_points:
        if entry.get("entryPointType") == "video" and entry.get("uri"):
            return entry["uri"]
    return None


def gcal_event_to_event(item: dict, is_self: AttendeeCheck | None = None) -> Event | None:
    """Build an Event from a Google Calendar event resource.

    Birthday events are provider-generated and read-only; they return None.
    """
    if item.get("eventType") == "birthday":
        logger.debug(f"Ignoring birthday event {item.get('id')}")
        return None

    missing = [k for k in ("id", "summary", "start", "end") if not item.get(k)]
    try:
        start = _gcal_time(item.get("start"))
        end = _gcal_time(item.get("end"))
    except ValueError as e:
        logger.warning(f"Skipping calendar event {item.get('id', '<no id>')}: bad date ({e})")
        return None
    if missing or start is None or end is None:
        logger.warning(
            f"Skipping calendar event {item.get('id', '<no id>')}: "
            f"missing {', '.join(missing) or 'start/end'}"
        )
        return None

    is_self = is_self or attendee_is_self
    status = item.get("status", "confirmed")
    visibility = item.get("visibility", "default")
    if visibility == "confidential":
        visibility = "private"

    overrides = (item.get("reminders") or {}).get("overrides") or []
    reminders = overrides[0].get("minutes") if overrides else None

    organizer = item.get("organizer") or {}
    recurrence = item.get("recurrence") or []
    private = (item.get("extendedProperties") or {}).get("private") or {}

    return Event(
        id=item["id"],
        title=item["summary"],
        start_time=start,
        end_time=end,
        description=item.get("description"),
        location=item.get("location"),
        status=status if status in EVENT_STATUSES else "confirmed",
        reminders=reminders,
        attendees=[_attendee_name(a) for a in item.get("attendees") or [] if not is_self(a)],
        organizer=organizer.get("displayName") or organizer.get("email"),
        conference_link=_conference_link(item),
        recurrence=parse_rrule(recurrence[0]) if recurrence else None,
        color=GCAL_COLORS.get(str(item.get("colorId", "")), "Default"),
        visibility=visibility if visibility in VISIBILITIES else "default",
        gcal_event_id=item["id"],
        notion_page_id=private.get(NOTION_LINK_KEY),
        recurring_event_id=item.get("recurringEventId"),
    )


def _gcal_time_block(value: datetime, all_day: bool) -> dict:
    if all_day:
        return {"date": value.astimezone(timezone.utc).date().isoformat()}
    return {"dateTime": _format_instant(value), "timeZone": "UTC"}


def reminders_block(minutes: int) -> dict:
    return {"useDefault": False, "overrides": [{"method": "popup", "minutes": int(minutes)}]}


def link_body(notion_page_id: str) -> dict:
    """Patch body that only stamps the Notion link onto a calendar event."""
    return {"extendedProperties": {"private": {NOTION_LINK_KEY: notion_page_id}}}


def event_to_gcal_body(event: Event, mapping: FieldMapping | None = None) -> dict:
    """Build an insert/patch body for the Calendar API."""
    mapping = mapping or FieldMapping()
    all_day = event.is_all_day
    body = {
        "summary": event.title,
        "description": event.description or "",
        "location": event.location or "",
        "start": _gcal_time_block(event.start_time, all_day),
        "end": _gcal_time_block(event.end_time, all_day),
    }
    if event.notion_page_id:
        body.update(link_body(event.notion_page_id))

    if mapping.is_enabled(OptionalField.REMINDERS) and event.reminders is not None:
        body["reminders"] = reminders_block(event.reminders)
    if mapping.is_enabled(OptionalField.COLOR) and event.color in _COLOR_IDS:
        body["colorId"] = _COLOR_IDS[event.color]
    if mapping.is_enabled(OptionalField.VISIBILITY) and event.visibility in VISIBILITIES:
        body["visibility"] = event.visibility
    return body


# ---------------------------------------------------------------------------
# Notion
# ---------------------------------------------------------------------------


def _plain_text(prop: dict | None) -> str | None:
    if not prop:
        return None
    chunks = prop.get(prop.get("type", ""), None)
    if chunks is None:
        chunks = prop.get("title") or prop.get("rich_text") or []
    if not isinstance(chunks, list):
        return None
    text = "".join(c.get("plain_text") or (c.get("text") or {}).get("content", "") for c in chunks)
    return text or None


def _find_title(properties: dict, name: str) -> str | None:
    if name in properties:
        return _plain_text(properties[name])
    for prop in properties.values():
        if prop.get("type") == "title":
            return _plain_text(prop)
    return None


def _read_property(prop: dict | None, ptype: PropertyType):
    if not prop:
        return None
    if ptype in (PropertyType.TITLE, PropertyType.RICH_TEXT):
        return _plain_text(prop)
    if ptype == PropertyType.NUMBER:
        return prop.get("number")
    if ptype == PropertyType.URL:
        return prop.get("url")
    if ptype == PropertyType.CHECKBOX:
        return prop.get("checkbox")
    if ptype == PropertyType.SELECT:
        return (prop.get("select") or {}).get("name")
    if ptype == PropertyType.DATE:
        return prop.get("date")
    return None


def notion_page_to_event(page: dict, mapping: FieldMapping | None = None) -> Event | None:
    """Build an Event from a Notion database page."""
    mapping = mapping or FieldMapping()
    properties = page.get("properties") or {}
    page_id = page.get("id")

    title = _find_title(properties, mapping.core_config("title").property_name)
    date_value = (properties.get(mapping.core_config("date").property_name) or {}).get("date") or {}
    if not page_id or not title or not date_value.get("start"):
        logger.warning(f"Skipping Notion page {page_id or '<no id>'}: missing title or date")
        return None

    try:
        start = parse_datetime(date_value["start"])
        if date_value.get("end"):
            end = parse_datetime(date_value["end"])
            if len(date_value["end"]) == 10:
                end += timedelta(days=1)  # Notion end dates are inclusive
        elif len(date_value["start"]) == 10:
            end = start + timedelta(days=1)
        else:
            end = start + timedelta(hours=1)
    except ValueError as e:
        logger.warning(f"Skipping Notion page {page_id}: bad date ({e})")
        return None

    def core_text(name: str) -> str | None:
        cfg = mapping.core_config(name)
        return _plain_text(properties.get(cfg.property_name))

    event = Event(
        id=page_id,
        title=title,
        start_time=start,
        end_time=end,
        description=core_text("description"),
        location=core_text("location"),
        gcal_event_id=core_text("gcal_event_id"),
        notion_page_id=page_id,
    )

    for opt in mapping.enabled_optional():
        cfg = mapping.optional[opt]
        value = _read_property(properties.get(cfg.property_name), cfg.property_type)
        if value is None:
            continue
        if opt == OptionalField.REMINDERS:
            event.reminders = max(int(value), 0)
        elif opt == OptionalField.ATTENDEES:
            event.attendees = [a.strip() for a in str(value).split(",") if a.strip()]
        elif opt == OptionalField.VISIBILITY:
            value = str(value).lower()
            event.visibility = value if value in VISIBILITIES else None
        else:
            setattr(event, opt.key, value)
    return event


def _notion_date(event: Event) -> dict:
    if event.is_all_day:
        start = event.start_time.astimezone(timezone.utc).date()
        last_day = (event.end_time - timedelta(days=1)).astimezone(timezone.utc).date()
        return {"start": start.isoformat(), "end": last_day.isoformat() if last_day > start else None}
    return {"start": _format_instant(event.start_time), "end": _format_instant(event.end_time)}


def build_property_value(ptype: PropertyType, value) -> dict:
    """Wrap a plain value in the Notion property object for ``ptype``."""
    if isinstance(value, (list, tuple)) and ptype != PropertyType.DATE:
        value = ", ".join(str(v) for v in value)
    if ptype == PropertyType.TITLE:
        return {"title": [{"text": {"content": str(value or "")[:NOTION_TEXT_LIMIT]}}]}
    if ptype == PropertyType.RICH_TEXT:
        if value is None or value == "":
            return {"rich_text": []}
        return {"rich_text": [{"text": {"content": str(value)[:NOTION_TEXT_LIMIT]}}]}
    if ptype == PropertyType.NUMBER:
        return {"number": value}
    if ptype == PropertyType.DATE:
        return {"date": value or None}
    if ptype == PropertyType.CHECKBOX:
        return {"checkbox": bool(value)}
    if ptype == PropertyType.URL:
        return {"url": value or None}
    if ptype == PropertyType.SELECT:
        return {"select": {"name": str(value)} if value else None}
    raise ValueError(f"Unsupported property type: {ptype}")


def optional_property(mapping: FieldMapping, opt: OptionalField, value) -> tuple[str, dict]:
    cfg = mapping.optional[opt]
    return cfg.property_name, build_property_value(cfg.property_type, value)


def link_property(mapping: FieldMapping, gcal_event_id: str) -> dict:
    """Properties that only stamp the calendar link onto a Notion page."""
    cfg = mapping.core_config("gcal_event_id")
    return {cfg.property_name: build_property_value(cfg.property_type, gcal_event_id)}


def event_to_notion_properties(event: Event, mapping: FieldMapping | None = None) -> dict:
    """Build the ``properties`` object for a Notion create/update."""
    mapping = mapping or FieldMapping()
    props = {}
    for name in CORE_FIELDS:
        if not mapping.is_core_enabled(name):
            continue
        cfg = mapping.core_config(name)
        if name == "date":
            props[cfg.property_name] = build_property_value(cfg.property_type, _notion_date(event))
        elif name == "gcal_event_id":
            if event.gcal_event_id:
                props[cfg.property_name] = build_property_value(
                    cfg.property_type, event.gcal_event_id
                )
        else:
            props[cfg.property_name] = build_property_value(
                cfg.property_type, getattr(event, name)
            )

    for opt in mapping.enabled_optional():
        value = opt.extract(event)
        if value is not None:
            key, prop = optional_property(mapping, opt, value)
            props[key] = prop
    return props


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def to_event(
    payload: dict,
    source: Source,
    mapping: FieldMapping | None = None,
    is_self: AttendeeCheck | None = None,
) -> Event | None:
    if source == Source.GCAL:
        return gcal_event_to_event(payload, is_self=is_self)
    return notion_page_to_event(payload, mapping)


def from_event(event: Event, direction: SyncDirection, mapping: FieldMapping | None = None) -> dict:
    """Native payload for the destination of ``direction``."""
    if direction == SyncDirection.NOTION_TO_GCAL:
        return event_to_gcal_body(event, mapping)
    return event_to_notion_properties(event, mapping)
