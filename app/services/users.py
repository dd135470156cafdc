"""Registry of the accounts that own favorites and reviews."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import User
from ..errors import Conflict, NotFound, ValidationError
from ..models import UserView
from ..utils import page_offset
from .preferences import store_errors

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_EDITABLE_FIELDS = ("first_name", "last_name", "email", "phone")
_REQUIRED_FIELDS = ("first_name", "last_name", "email")


class UserStore:
    """Creates, lists, edits and removes user accounts.

    Emails are stored lower-cased; duplicates surface as ``Conflict`` from the
    unique index rather than from a prior lookup.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create_user(self, fields: Mapping[str, Any]) -> UserView:
        values = self._clean(fields, partial=False)
        with store_errors("create the user"):
            async with self._session_factory() as session:
                user = User(**values)
                session.add(user)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    raise Conflict("Email is already registered") from None
        logger.info("User %s created", user.id)
        return UserView.model_validate(user)

    async def list_users(
        self, page: int = 1, limit: int = 20
    ) -> tuple[list[UserView], int]:
        offset = page_offset(page, limit)
        with store_errors("list users"):
            async with self._session_factory() as session:
                total = await session.scalar(select(func.count(User.id)))
                result = await session.execute(
                    select(User)
                    .order_by(User.created_at.desc(), User.id.desc())
                    .offset(offset)
                    .limit(limit)
                )
                users = [UserView.model_validate(user) for user in result.scalars()]
        return users, int(total or 0)

    async def get_user(self, user_id: int) -> UserView:
        with store_errors("load the user"):
            async with self._session_factory() as session:
                user = await session.get(User, user_id)
                if user is None:
                    raise NotFound("User not found")
                return UserView.model_validate(user)

    async def update_user(self, user_id: int, fields: Mapping[str, Any]) -> UserView:
        """Apply the supplied fields; omitted ones keep their stored value."""

        values = self._clean(fields, partial=True)
        with store_errors("update the user"):
            async with self._session_factory() as session:
                try:
                    result = await session.execute(
                        update(User)
                        .where(User.id == user_id)
                        .values(**values, updated_at=datetime.utcnow())
                    )
                except IntegrityError:
                    await session.rollback()
                    raise Conflict("Email is already in use by another user") from None
                if not result.rowcount:
                    await session.rollback()
                    raise NotFound("User not found")
                user = await session.get(User, user_id, populate_existing=True)
                await session.commit()
        logger.info("User %s updated", user_id)
        return UserView.model_validate(user)

    async def delete_user(self, user_id: int) -> None:
        """Remove a user; their favorites and reviews cascade with them."""

        with store_errors("delete the user"):
            async with self._session_factory() as session:
                result = await session.execute(delete(User).where(User.id == user_id))
                if not result.rowcount:
                    await session.rollback()
                    raise NotFound("User not found")
                await session.commit()
        logger.info("User %s deleted", user_id)

    @staticmethod
    def _clean(fields: Mapping[str, Any], *, partial: bool) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for name in _EDITABLE_FIELDS:
            if name not in fields:
                continue
            value = fields[name]
            if isinstance(value, str):
                value = value.strip() or None
            if value is None and name in _REQUIRED_FIELDS:
                raise ValidationError(f"{name} must not be empty", field=name)
            values[name] = value

        if not partial:
            missing = [name for name in _REQUIRED_FIELDS if name not in values]
            if missing:
                raise ValidationError(
                    "first_name, last_name and email are required", field=missing[0]
                )

        if "email" in values:
            email = str(values["email"]).lower()
            if not EMAIL_PATTERN.match(email):
                raise ValidationError("Invalid email format", field="email")
            values["email"] = email
        return values
