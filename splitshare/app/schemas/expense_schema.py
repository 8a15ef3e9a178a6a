"""
schemas/expense_schema.py — Marshmallow schema for recording an expense.

Validation responsibility:
  - This file (request shape, 400):
      - Field types, lengths, split_type enum values
      - Amount precision: at most 2 decimal places (INVALID_AMOUNT_PRECISION)
      - DUPLICATE_SPLIT_USER for EXACT / PERCENT payloads
      - Non-empty-after-trim enforcement for description
  - services/expense_service.py (ledger rules, 422):
      - INVALID_AMOUNT (amount must be > 0)
      - MISSING_SPLIT_DATA, INVALID_SPLIT_VALUE
      - SPLIT_SUM_MISMATCH / PERCENT_SUM_MISMATCH (Decimal tolerance checks)
      - PAYER_NOT_MEMBER, SPLIT_USER_NOT_MEMBER (DB membership lookups)

IMPORTANT: Inherits from marshmallow.Schema directly, never ma.Schema.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import (
    Schema,
    ValidationError,
    fields,
    validate,
    validates_schema,
)

from splitshare.app.errors import ErrorCode
from splitshare.app.models.expense import SplitType


def _validate_precision(value: Decimal) -> None:
    """
    At most 2 decimal places. Input is REJECTED, never rounded.

    Positivity is a ledger rule and is checked in expense_service.py so the
    service enforces it for every caller, not only HTTP ones.
    """
    # Decimal("10.123").as_tuple().exponent == -3 → 3 dp → REJECT
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_non_empty_after_trim(value: str) -> None:
    """Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint at the API layer."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class SplitDataSchema(Schema):
    """
    One (user, value) pair of split_data.

    value is an absolute amount for EXACT and a percentage for PERCENT.
    Range checks live in the service because they depend on split_type.
    """

    user_id = fields.Int(
        required=True,
        strict=True,   # reject floats like 1.0
        validate=validate.Range(min=1, error="user_id must be a positive integer."),
    )

    value = fields.Decimal(required=True)


class CreateExpenseSchema(Schema):
    """
    POST /groups/:id/expenses

    split_type:
      - EQUAL   → split_data is ignored; every current member pays a share.
      - EXACT   → split_data carries absolute amounts (max 2 dp each).
      - PERCENT → split_data carries percentages.

    paid_by is optional and defaults to the caller in the service.
    """

    description = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Description must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_precision,
    )

    split_type = fields.Enum(
        SplitType,
        required=True,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_TYPE},
    )

    split_data = fields.List(
        fields.Nested(SplitDataSchema),
        load_default=None,
    )

    paid_by = fields.Int(
        load_default=None,
        strict=True,
        allow_none=True,
        validate=validate.Range(min=1, error="paid_by must be a positive integer."),
    )

    @validates_schema
    def validate_split_data_shape(self, data: dict, **kwargs) -> None:
        """
        Shape checks on split_data for EXACT and PERCENT.

        Whether split_data is present at all is MISSING_SPLIT_DATA, which
        the service raises so direct callers get the same 422.
        """
        split_type = data.get("split_type")
        split_data = data.get("split_data")

        if split_type in (None, SplitType.EQUAL) or not split_data:
            return

        user_ids = [entry["user_id"] for entry in split_data]
        if len(user_ids) != len(set(user_ids)):
            raise ValidationError({"split_data": [ErrorCode.DUPLICATE_SPLIT_USER]})

        if split_type == SplitType.EXACT:
            for entry in split_data:
                if entry["value"].as_tuple().exponent < -2:
                    raise ValidationError({"split_data": [ErrorCode.INVALID_AMOUNT_PRECISION]})
