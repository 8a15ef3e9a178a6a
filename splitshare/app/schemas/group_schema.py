"""
schemas/group_schema.py — Marshmallow schemas for group and membership endpoints.

Validation responsibility:
  - This file: field types, string lengths, non-empty checks (including trim).
  - services/group_service.py:
      - caller must be a member to read/write group data (FORBIDDEN)
      - USER_NOT_FOUND  (handle/email lookup requires DB)
      - ALREADY_MEMBER  (membership existence requires DB)
      - GROUP_NOT_FOUND (requires DB lookup)

IMPORTANT: Inherits from marshmallow.Schema directly, never ma.Schema.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate


def _validate_non_empty_after_trim(value: str) -> None:
    """
    Raises ValidationError if the string is blank or contains only whitespace.
    validate.Length(min=1) alone lets "   " through.
    """
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class CreateGroupSchema(Schema):
    """POST /groups — name is non-empty after trim, max 100 chars."""

    name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Group name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )


class AddMemberSchema(Schema):
    """
    POST /groups/:id/members

    The new member is named by handle or email, not by id: people add
    friends by what they know about them. Normalisation (trim, lower-case)
    and the lookup happen in group_service.add_member().
    """

    handle_or_email = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="handle_or_email must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )
