# Overview: JSON envelopes shared by the API blueprints.

from __future__ import annotations

from typing import Any, Mapping

from flask import current_app, jsonify

from .errors import ValidationFailed, WorkflowError
from .extensions import db
from .time_utils import parse_iso_datetime


def ok(status: int = 200, **body):
    return jsonify({"ok": True, **body}), status


def workflow_error(exc: WorkflowError):
    """Typed failure: {"ok": false, "error": {code, message, retriable, details}}."""
    return jsonify({"ok": False, "error": exc.to_dict()}), exc.http_status


def unexpected_error(context: str):
    db.session.rollback()
    current_app.logger.exception("Unexpected error while %s", context)
    return jsonify({"ok": False, "error": {"code": "INTERNAL_ERROR", "message": "Unexpected error", "retriable": False}}), 500


def required(data: Mapping[str, Any], *fields: str):
    """Pull required fields from a JSON body, raising ValidationFailed for missing ones."""
    missing = [name for name in fields if data.get(name) in (None, "")]
    if missing:
        raise ValidationFailed(f"Missing required field(s): {', '.join(missing)}", missing=missing)
    values = tuple(data[name] for name in fields)
    return values[0] if len(values) == 1 else values


def as_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"{name} must be an integer", field=name)


def as_datetime(value: Any, name: str):
    """Optional ISO-8601 query value as a UTC-naive datetime."""
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"{name} must be an ISO-8601 timestamp", field=name)
