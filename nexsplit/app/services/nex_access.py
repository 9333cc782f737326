"""
services/nex_access.py — Nex lookup, membership checks and the per-nex lock.

Shared by the expense, balance and settlement services. Membership itself is
administered elsewhere; here it is only read.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from nexsplit.app.errors import AppError, ErrorCode
from nexsplit.app.models.nex import MemberStatus, Nex, NexMember
from nexsplit.app.models.user import User


def get_nex_or_404(nex_id: int, session: Session) -> Nex:
    """Returns the Nex or raises NEX_NOT_FOUND (404)."""
    nex = session.get(Nex, nex_id)
    if nex is None:
        raise AppError(
            ErrorCode.NEX_NOT_FOUND,
            f"Nex {nex_id} does not exist.",
            404,
        )
    return nex


def lock_nex(nex_id: int, session: Session) -> Nex:
    """
    Takes the per-nex write lock (SELECT ... FOR UPDATE on the nex row) and
    returns the Nex. Held until the route commits or rolls back.
    SQLite ignores FOR UPDATE; its single writer gives the same guarantee.
    """
    nex = session.execute(
        select(Nex).where(Nex.id == nex_id).with_for_update()
    ).scalar_one_or_none()
    if nex is None:
        raise AppError(
            ErrorCode.NEX_NOT_FOUND,
            f"Nex {nex_id} does not exist.",
            404,
        )
    return nex


def get_active_membership(nex_id: int, user_id: int, session: Session) -> NexMember | None:
    return session.execute(
        select(NexMember).where(
            NexMember.nex_id == nex_id,
            NexMember.user_id == user_id,
            NexMember.status == MemberStatus.ACTIVE,
        )
    ).scalar_one_or_none()


def require_member(nex_id: int, user_id: int, session: Session) -> NexMember:
    """
    Raises FORBIDDEN (403) if user_id is not an active member of nex_id.
    Non-members receive 403, not 404.
    """
    membership = get_active_membership(nex_id, user_id, session)
    if membership is None:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of nex {nex_id}.",
            403,
        )
    return membership


def get_member_ids(nex_id: int, session: Session) -> list[int]:
    """user_ids of all active members, in join order."""
    stmt = (
        select(NexMember.user_id)
        .where(
            NexMember.nex_id == nex_id,
            NexMember.status == MemberStatus.ACTIVE,
        )
        .order_by(NexMember.joined_at, NexMember.id)
    )
    return list(session.execute(stmt).scalars().all())


def get_members(nex_id: int, session: Session) -> list[User]:
    """User rows of all active members, in join order."""
    stmt = (
        select(User)
        .join(NexMember, User.id == NexMember.user_id)
        .where(
            NexMember.nex_id == nex_id,
            NexMember.status == MemberStatus.ACTIVE,
        )
        .order_by(NexMember.joined_at, NexMember.id)
    )
    return list(session.execute(stmt).scalars().all())


def get_usernames(user_ids, session: Session) -> dict[int, str]:
    """{user_id: username} for the given ids, members or not."""
    ids = set(user_ids)
    if not ids:
        return {}
    rows = session.execute(select(User.id, User.username).where(User.id.in_(ids))).all()
    return {uid: name for uid, name in rows}
