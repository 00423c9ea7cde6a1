"""Typed request bodies. Each ``from_payload`` raises ValidationError on bad input."""

from dataclasses import dataclass
from datetime import date
from typing import Optional

from errors import ValidationError


def _text(data, field, required=True):
    value = data.get(field)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} required", field=field)
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field=field)
    return value.strip()


def _int(data, field, required=True):
    value = data.get(field)
    if value in (None, ""):
        if required:
            raise ValidationError(f"{field} required", field=field)
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", field=field)


def _bool(data, field):
    value = data.get(field)
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def parse_date(value, field="remind_date"):
    if not value:
        raise ValidationError(f"{field} required", field=field)
    try:
        text = str(value).strip()
        # Accept a full ISO timestamp, keep only its date
        if "T" in text or " " in text:
            text = text.replace("T", " ", 1).split(" ", 1)[0]
        return date.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"{field} must be YYYY-MM-DD", field=field)


@dataclass(frozen=True)
class RegisterRequest:
    name: str
    email: str
    password: str
    mobile: str

    @classmethod
    def from_payload(cls, data):
        return cls(_text(data, "name"), _text(data, "email"), _text(data, "password"), _text(data, "mobile"))


@dataclass(frozen=True)
class LoginRequest:
    email: str
    password: str

    @classmethod
    def from_payload(cls, data):
        return cls(_text(data, "email"), _text(data, "password"))


@dataclass(frozen=True)
class HeaderRequest:
    name: str

    @classmethod
    def from_payload(cls, data):
        return cls(_text(data, "name"))


@dataclass(frozen=True)
class ItemRequest:
    header_id: Optional[int]
    title: Optional[str]
    short_description: Optional[str] = None
    long_description: Optional[str] = None
    highlights: Optional[str] = None

    @classmethod
    def from_payload(cls, data, partial=False):
        return cls(
            header_id=_int(data, "header_id", required=not partial),
            title=_text(data, "title", required=not partial),
            short_description=_text(data, "short_description", required=False),
            long_description=_text(data, "long_description", required=False),
            highlights=_text(data, "highlights", required=False),
        )

    def fields(self):
        """Item columns present in the request, for partial updates."""
        values = {
            "title": self.title,
            "short_description": self.short_description,
            "long_description": self.long_description,
            "highlights": self.highlights,
        }
        return {k: v for k, v in values.items() if v is not None}


@dataclass(frozen=True)
class ReminderRequest:
    name: str
    remind_date: date
    before: Optional[int]

    @classmethod
    def from_payload(cls, data):
        return cls(_text(data, "name"), parse_date(data.get("remind_date")), _int(data, "before", required=False))


@dataclass(frozen=True)
class DocumentRequest:
    """Multipart form fields sent alongside an uploaded file."""
    name: Optional[str]
    renewal_required: Optional[bool]

    @classmethod
    def from_payload(cls, data, partial=False):
        return cls(_text(data, "name", required=not partial), _bool(data, "renewal_required"))
