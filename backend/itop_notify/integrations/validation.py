"""Pydantic validation schemas for iTop change-log and ticket payloads.

iTop returns every field as a string, with ``null`` or ``""`` where a value
is unset and ``0`` for an empty external key. These schemas coerce all of
that into plain strings so the detectors can compare values directly.
"""

import logging

from pydantic import BaseModel, ValidationError, field_validator

logger = logging.getLogger(__name__)


def _as_text(v: object) -> str:
    if v is None:
        return ""
    if isinstance(v, bool):
        return "1" if v else "0"
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v).strip()


# ── Change operations ─────────────────────────────────────────────────


class ScalarChangeOp(BaseModel):
    """Fields of a CMDBChangeOpSetAttributeScalar object."""

    objkey: str
    objclass: str = ""
    attcode: str
    oldvalue: str = ""
    newvalue: str = ""
    date: str = ""
    userinfo: str = ""
    user_id: str = ""

    @field_validator("objkey", "objclass", "attcode", "oldvalue", "newvalue", "date", "userinfo", mode="before")
    @classmethod
    def coerce_text(cls, v: object) -> str:
        return _as_text(v)

    @field_validator("user_id", mode="before")
    @classmethod
    def coerce_user_id(cls, v: object) -> str:
        """External key: ``0`` means no iTop user (system change)."""
        text = _as_text(v)
        return "" if text == "0" else text


class CaseLogChangeOp(BaseModel):
    """Fields of a CMDBChangeOpSetAttributeCaseLog object."""

    objkey: str
    objclass: str = ""
    attcode: str
    date: str = ""
    userinfo: str = ""
    user_id: str = ""

    @field_validator("objkey", "objclass", "attcode", "date", "userinfo", mode="before")
    @classmethod
    def coerce_text(cls, v: object) -> str:
        return _as_text(v)

    @field_validator("user_id", mode="before")
    @classmethod
    def coerce_user_id(cls, v: object) -> str:
        text = _as_text(v)
        return "" if text == "0" else text


# ── Tickets ───────────────────────────────────────────────────────────


class TicketDeadlineFields(BaseModel):
    """Subset of UserRequest/Incident fields used for SLA deadline checks."""

    id: str
    deadline: str = ""

    @field_validator("id", "deadline", mode="before")
    @classmethod
    def coerce_text(cls, v: object) -> str:
        return _as_text(v)


# ── Validation entry points ───────────────────────────────────────────


def validate_change_op(raw: dict, model: type[BaseModel]) -> BaseModel | None:
    """Validate one change-op field dict. Returns None (and logs) when unusable."""
    try:
        return model.model_validate(raw)
    except ValidationError:
        logger.warning("Skipping malformed %s payload: %r", model.__name__, raw)
        return None
