"""
Render RFC 5545 recurrence rules as short human-readable phrases.
"""

import re

UNKNOWN_RECURRENCE = "Unknown recurrence"

DAY_NAMES = {
    "SU": "Sunday",
    "MO": "Monday",
    "TU": "Tuesday",
    "WE": "Wednesday",
    "TH": "Thursday",
    "FR": "Friday",
    "SA": "Saturday",
}

MONTH_NAMES = {
    "1": "January",
    "2": "February",
    "3": "March",
    "4": "April",
    "5": "May",
    "6": "June",
    "7": "July",
    "8": "August",
    "9": "September",
    "10": "October",
    "11": "November",
    "12": "December",
}

ORDINALS = {
    "1": "first",
    "2": "second",
    "3": "third",
    "4": "fourth",
    "5": "fifth",
    "-1": "last",
}

_DAY_TOKEN_RE = re.compile(r"^([+-]?\d{1,2})?([A-Z]{2})$")
_PREFIX_RE = re.compile(r"^RRULE:", re.IGNORECASE)


def _split_rule(rule: str) -> dict[str, str]:
    parts = {}
    for segment in _PREFIX_RE.sub("", rule.strip()).split(";"):
        key, sep, value = segment.partition("=")
        if sep and key and value:
            parts[key.strip().upper()] = value.strip()
    return parts


def _day_phrase(token: str) -> str:
    token = token.strip().upper()
    match = _DAY_TOKEN_RE.match(token)
    if not match:
        return DAY_NAMES.get(token, token)
    position, code = match.groups()
    name = DAY_NAMES.get(code, code)
    if position:
        position = position.lstrip("+")
        ordinal = ORDINALS.get(position, f"{position}th")
        return f"the {ordinal} {name}"
    return name


def join_list(items: list[str]) -> str:
    """Join as "X", "X and Y" or "A, B, and C"."""
    if len(items) == 1:
        return items[0]
    if len(items) == 2:
        return f"{items[0]} and {items[1]}"
    return f"{', '.join(items[:-1])}, and {items[-1]}"


def format_days(byday: str) -> str:
    return join_list([_day_phrase(t) for t in byday.split(",") if t.strip()])


def parse_rrule(rule: str | None) -> str:
    """
    Convert an RRULE string to text, e.g.::

        parse_rrule("RRULE:FREQ=WEEKLY;INTERVAL=2;BYDAY=TU,TH")
        # 'Every 2 weeks on Tuesday and Thursday'

    UNTIL and COUNT are ignored. Anything that cannot be rendered returns
    UNKNOWN_RECURRENCE so that a cosmetic failure never blocks a sync.
    """
    if not rule or not isinstance(rule, str):
        return UNKNOWN_RECURRENCE

    parts = _split_rule(rule)
    freq = parts.get("FREQ", "").upper()
    if not freq:
        return UNKNOWN_RECURRENCE
    try:
        interval = int(parts.get("INTERVAL", "1"))
    except ValueError:
        return UNKNOWN_RECURRENCE
    if interval < 1:
        return UNKNOWN_RECURRENCE

    byday = parts.get("BYDAY")
    days = format_days(byday) if byday else ""

    if freq == "DAILY":
        return "Daily" if interval == 1 else f"Every {interval} days"

    if freq == "WEEKLY":
        base = "Weekly" if interval == 1 else f"Every {interval} weeks"
        return f"{base} on {days}" if days else base

    if freq == "MONTHLY":
        base = "Monthly" if interval == 1 else f"Every {interval} months"
        if parts.get("BYMONTHDAY"):
            return f"{base} on day {parts['BYMONTHDAY']}"
        if days:
            return f"{base} on {days}"
        return base

    if freq == "YEARLY":
        base = "Yearly" if interval == 1 else f"Every {interval} years"
        month = MONTH_NAMES.get(parts.get("BYMONTH", "").lstrip("0"), "")
        day = parts.get("BYMONTHDAY", "")
        if month and day:
            return f"{base} on {month} {day}"
        if month:
            return f"{base} in {month}"
        return base

    return UNKNOWN_RECURRENCE
