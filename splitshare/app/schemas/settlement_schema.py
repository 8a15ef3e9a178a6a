"""
schemas/settlement_schema.py — Marshmallow schema for the global settle-up endpoint.

Validation responsibility:
  - This file: field types, decimal precision.
  - services/settlement_service.py:
      - INVALID_AMOUNT  (422) amount must be > 0
      - SELF_SETTLEMENT (422) friend == caller; the caller id comes from
                              flask.g and is passed to the service
      - USER_NOT_FOUND  (404), NO_COMMON_GROUP (404) require DB lookups

IMPORTANT: Inherits from marshmallow.Schema directly, never ma.Schema.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, validate

from splitshare.app.errors import ErrorCode


def _validate_precision(value: Decimal) -> None:
    """
    Same rule as expense_schema: at most 2 decimal places, never rounded.
    Kept local so each schema file stands alone.
    """
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


class SettleGlobalDebtSchema(Schema):
    """
    POST /settlements/global

    The caller (from flask.g.user_id) pays `amount` to `friend_id`. The
    payment is recorded as an EXACT expense in a group both belong to.
    """

    friend_id = fields.Int(
        required=True,
        strict=True,   # reject floats like 1.0
        validate=validate.Range(
            min=1,
            error="friend_id must be a positive integer.",
        ),
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_precision,
    )
