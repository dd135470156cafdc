"""Behaviour of the user registry."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from app.database import Database
from app.db_models import FavoriteRecord
from app.errors import Conflict, NotFound, ValidationError
from app.services.preferences import PreferenceStore
from app.services.users import UserStore

ANA = {"first_name": "Ana", "last_name": "Ruiz", "email": "Ana.Ruiz@Example.com"}


async def open_users(tmp_path) -> tuple[Database, UserStore]:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'users.db'}")
    await database.create_all()
    return database, UserStore(database.session_factory)


async def count_favorites(database: Database) -> int:
    async with database.session() as session:
        result = await session.execute(select(func.count()).select_from(FavoriteRecord))
        return int(result.scalar_one())


@pytest.mark.anyio("asyncio")
async def test_create_user_normalises_email(tmp_path) -> None:
    database, users = await open_users(tmp_path)
    try:
        created = await users.create_user({**ANA, "phone": " 600 111 222 "})

        assert created.email == "ana.ruiz@example.com"
        assert created.phone == "600 111 222"
        assert created.display_name == "Ana Ruiz"
        assert (await users.get_user(created.id)).email == "ana.ruiz@example.com"
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_email_uniqueness_ignores_case(tmp_path) -> None:
    database, users = await open_users(tmp_path)
    try:
        await users.create_user(ANA)

        with pytest.raises(Conflict):
            await users.create_user({**ANA, "email": "ANA.RUIZ@EXAMPLE.COM"})

        _, total = await users.list_users()
        assert total == 1
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize(
    "fields, field",
    [
        ({**ANA, "email": "not-an-email"}, "email"),
        ({"first_name": "Ana", "email": "ana@example.com"}, "last_name"),
        ({**ANA, "first_name": "   "}, "first_name"),
    ],
)
async def test_create_user_rejects_bad_input(tmp_path, fields, field) -> None:
    database, users = await open_users(tmp_path)
    try:
        with pytest.raises(ValidationError) as excinfo:
            await users.create_user(fields)
        assert excinfo.value.field == field
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_update_user_keeps_omitted_fields(tmp_path) -> None:
    database, users = await open_users(tmp_path)
    try:
        created = await users.create_user({**ANA, "phone": "600111222"})

        updated = await users.update_user(created.id, {"last_name": "Ruiz Soler"})

        assert updated.last_name == "Ruiz Soler"
        assert updated.first_name == "Ana"
        assert updated.phone == "600111222"
        assert updated.display_name == "Ana Ruiz Soler"

        cleared = await users.update_user(created.id, {"phone": None})
        assert cleared.phone is None
        assert cleared.email == "ana.ruiz@example.com"
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_update_user_conflicts_and_missing_rows(tmp_path) -> None:
    database, users = await open_users(tmp_path)
    try:
        ana = await users.create_user(ANA)
        await users.create_user(
            {"first_name": "Luis", "last_name": "Gil", "email": "luis@example.com"}
        )

        with pytest.raises(Conflict):
            await users.update_user(ana.id, {"email": "LUIS@example.com"})
        with pytest.raises(ValidationError):
            await users.update_user(ana.id, {"email": None})
        with pytest.raises(NotFound):
            await users.update_user(ana.id + 99, {"first_name": "Nadie"})
        with pytest.raises(NotFound):
            await users.get_user(ana.id + 99)

        # Re-submitting one's own address is not a conflict.
        same = await users.update_user(ana.id, {"email": "ana.ruiz@example.com"})
        assert same.id == ana.id
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_list_users_pages_newest_first(tmp_path) -> None:
    database, users = await open_users(tmp_path)
    try:
        for index in range(3):
            await users.create_user(
                {"first_name": f"User{index}", "last_name": "Test", "email": f"u{index}@example.com"}
            )

        first, total = await users.list_users(page=1, limit=2)
        second, _ = await users.list_users(page=2, limit=2)

        assert total == 3
        assert [user.first_name for user in first] == ["User2", "User1"]
        assert [user.first_name for user in second] == ["User0"]

        with pytest.raises(ValidationError):
            await users.list_users(limit=0)
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_delete_user_removes_their_favorites(tmp_path) -> None:
    database, users = await open_users(tmp_path)
    try:
        ana = await users.create_user(ANA)
        store = PreferenceStore(database.session_factory)
        await store.upsert(ana.id, "favorite", "movie", "550", 550)

        await users.delete_user(ana.id)

        assert await count_favorites(database) == 0
        with pytest.raises(NotFound):
            await users.delete_user(ana.id)
    finally:
        await database.dispose()
