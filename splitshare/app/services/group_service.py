"""
services/group_service.py — Group, membership and group lifecycle logic.

Authorization rules:
  - Reading a group or adding a member: caller must be a current member
  - Deleting a group: creator only, and only once every balance is settled

Group deletion is the one destructive operation in SplitShare. It is gated
on every member balance being within one cent of zero, then removes rows
children first: splits → expenses → memberships → group.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility; services only flush.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from splitshare.app.errors import AuthError, ErrorCode, NotFoundError, ValidationError
from splitshare.app.models.expense import Expense
from splitshare.app.models.group import Group
from splitshare.app.models.membership import Membership
from splitshare.app.models.split import Split
from splitshare.app.models.user import User
from splitshare.app.services import balance_service, user_service

logger = logging.getLogger(__name__)


# ── Helpers ────────────────────────────────────────────────────────────────

def _get_group_or_404(group_id: int, session: Session) -> Group:
    group = balance_service.get_group(group_id, session)
    if group is None:
        raise NotFoundError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
        )
    return group


def require_member(group_id: int, user_id: int, member_ids: list[int]) -> None:
    """
    Raises FORBIDDEN (403) if user_id is not among the group's member ids.
    Non-members receive 403, not 404.
    """
    if user_id not in member_ids:
        raise AuthError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
            403,
        )


def _build_group_dict(group: Group, members: list[User]) -> dict:
    return {
        "id": group.id,
        "name": group.name,
        "created_by_user_id": group.created_by_user_id,
        "created_at": group.created_at.isoformat() if group.created_at else None,
        "members": [user_service.serialize_user(m) for m in members],
    }


# ── Public service functions ───────────────────────────────────────────────

def create_group(name: str, creator_id: int, session: Session) -> dict:
    """
    Creates a new group. The creator becomes its owner ("admin") and its
    first and only member.
    """
    group = Group(name=name.strip(), created_by_user_id=creator_id)
    session.add(group)
    session.flush()  # populate group.id before creating membership

    session.add(Membership(user_id=creator_id, group_id=group.id))
    session.flush()

    creator = session.get(User, creator_id)
    logger.info("Group %s created by user %s", group.id, creator_id)
    return _build_group_dict(group, [creator] if creator else [])


def list_groups(user_id: int, session: Session) -> list[dict]:
    """
    Groups the user belongs to, oldest first.
    Lightweight dicts (no member list); see get_group() for members.
    """
    stmt = (
        select(Group)
        .join(Membership, Group.id == Membership.group_id)
        .where(Membership.user_id == user_id)
        .order_by(Group.created_at.asc(), Group.id.asc())
    )
    return [
        {
            "id": g.id,
            "name": g.name,
            "created_by_user_id": g.created_by_user_id,
            "created_at": g.created_at.isoformat() if g.created_at else None,
        }
        for g in session.execute(stmt).scalars().all()
    ]


def get_group(group_id: int, caller_id: int, session: Session) -> dict:
    """Group details with its admin and members in join order."""
    group = _get_group_or_404(group_id, session)
    members = balance_service.get_members(group_id, session)
    require_member(group_id, caller_id, [m.id for m in members])

    result = _build_group_dict(group, members)
    creator = session.get(User, group.created_by_user_id)
    result["admin"] = user_service.serialize_user(creator) if creator else None
    return result


def get_group_members(group_id: int, session: Session) -> list[dict]:
    """Current members in join order. Missing group → []."""
    if balance_service.get_group(group_id, session) is None:
        return []
    return [user_service.serialize_user(m) for m in balance_service.get_members(group_id, session)]


def add_member(
        group_id: int,
        caller_id: int,
        handle_or_email: str,
        session: Session,
) -> dict:
    """
    Adds a registered user, found by email or handle, to a group.

    The lookup key is trimmed and lower-cased; email matches take
    precedence over handle matches.

    Raises:
      NotFoundError(GROUP_NOT_FOUND)   — group does not exist
      AuthError(FORBIDDEN, 403)        — caller is not a member
      NotFoundError(USER_NOT_FOUND)    — nobody with that email or handle
      ValidationError(ALREADY_MEMBER, 409)
                                       — already in the group, including a
                                         concurrent add caught by the
                                         UNIQUE(user_id, group_id) constraint
    """
    _get_group_or_404(group_id, session)
    member_ids = balance_service.get_member_ids(group_id, session)
    require_member(group_id, caller_id, member_ids)

    key = handle_or_email.strip().lower()
    candidates = session.execute(
        select(User).where(or_(func.lower(User.email) == key, User.username == key))
    ).scalars().all()
    target = next(
        (u for u in candidates if u.email.lower() == key),
        candidates[0] if candidates else None,
    )
    if target is None:
        raise NotFoundError(
            ErrorCode.USER_NOT_FOUND,
            "User not found. Ask them to sign in once.",
            field="handle_or_email",
        )

    if target.id in member_ids:
        raise ValidationError(
            ErrorCode.ALREADY_MEMBER,
            f"{target.name} is already a member of this group.",
            409,
        )

    target_name = target.name
    membership = Membership(user_id=target.id, group_id=group_id)
    # Savepoint: a lost race undoes only this insert, not the caller's session.
    savepoint = session.begin_nested()
    session.add(membership)
    try:
        session.flush()
    except IntegrityError:
        savepoint.rollback()
        raise ValidationError(
            ErrorCode.ALREADY_MEMBER,
            f"{target_name} is already a member of this group.",
            409,
        )
    savepoint.commit()

    logger.info("User %s added to group %s by user %s", target.id, group_id, caller_id)
    return {
        "group_id": group_id,
        "user_id": target.id,
        "name": target.name,
        "username": target.username,
        "joined_at": membership.joined_at.isoformat() if membership.joined_at else None,
    }


def delete_group(group_id: int, caller_id: int, session: Session) -> None:
    """
    Deletes a fully settled group together with its expenses and splits.

    Raises:
      NotFoundError(GROUP_NOT_FOUND)             — group does not exist
      AuthError(FORBIDDEN, 403)                  — caller is not the creator
      ValidationError(UNSETTLED_BALANCES, 422)   — some |balance| > 0.01
    """
    group = _get_group_or_404(group_id, session)

    if group.created_by_user_id != caller_id:
        raise AuthError(
            ErrorCode.FORBIDDEN,
            "Only the admin can delete this group",
            403,
        )

    balances = balance_service.compute_balances(group_id, session)
    if any(abs(value) > balance_service.SETTLED_TOLERANCE for value in balances.values()):
        raise ValidationError(
            ErrorCode.UNSETTLED_BALANCES,
            "Cannot delete group: Not all expenses are settled.",
        )

    expense_ids = list(
        session.execute(select(Expense.id).where(Expense.group_id == group_id)).scalars().all()
    )
    if expense_ids:
        session.execute(delete(Split).where(Split.expense_id.in_(expense_ids)))
    session.execute(delete(Expense).where(Expense.group_id == group_id))
    session.execute(delete(Membership).where(Membership.group_id == group_id))
    session.execute(delete(Group).where(Group.id == group_id))
    session.flush()

    logger.info("Group %s deleted by user %s", group_id, caller_id)
