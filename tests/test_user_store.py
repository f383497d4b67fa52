"""
tests/test_user_store.py -- UserStore over in-memory SQLite (aiosqlite).

Covers the user directory (create / lookup / update) and the token_family
table (create / get / touch / delete / delete-all-for-user).
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError

from auth.store import UserStore
from core.models import User


class TestUserDirectory:
    @pytest.mark.asyncio
    async def test_create_assigns_id_and_timestamps(self, user_store: UserStore) -> None:
        user = await user_store.create_user(User(email="New@Example.com"))
        assert user.id
        assert user.created_at and user.updated_at
        assert user.email == "new@example.com"

    @pytest.mark.asyncio
    async def test_lookups(self, user_store: UserStore, user: User) -> None:
        assert (await user_store.get_by_id(user.id)).email == user.email
        assert (await user_store.get_by_email("GRACE@example.com")).id == user.id
        assert (await user_store.get_by_phone("+15550100")).id == user.id
        assert await user_store.get_by_id("nope") is None
        assert await user_store.get_by_email("nobody@example.com") is None

    @pytest.mark.asyncio
    async def test_flags_round_trip_as_bools(self, user_store: UserStore, user: User) -> None:
        fetched = await user_store.get_by_id(user.id)
        assert fetched.is_suspended is False
        assert fetched.is_deleted is False
        assert fetched.is_notification_enabled is True

    @pytest.mark.asyncio
    async def test_duplicate_email_rejected(self, user_store: UserStore, user: User) -> None:
        with pytest.raises(IntegrityError):
            await user_store.create_user(User(email=user.email))

    @pytest.mark.asyncio
    async def test_phone_only_users_do_not_collide_on_null_email(self, user_store: UserStore) -> None:
        await user_store.create_user(User(phone="+15550001"))
        await user_store.create_user(User(phone="+15550002"))
        assert (await user_store.get_by_phone("+15550002")).email is None

    @pytest.mark.asyncio
    async def test_update_user(self, user_store: UserStore, user: User) -> None:
        updated = await user_store.update_user(user.id, is_suspended=True, first_name="G.")
        assert updated.is_suspended is True
        assert updated.first_name == "G."
        assert updated.updated_at >= user.updated_at

    @pytest.mark.asyncio
    async def test_update_missing_user_returns_none(self, user_store: UserStore) -> None:
        assert await user_store.update_user("nope", first_name="x") is None

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self, user_store: UserStore, user: User) -> None:
        with pytest.raises(ValueError):
            await user_store.update_user(user.id, password="x")
        with pytest.raises(ValueError):
            await user_store.update_user(user.id, id="other")


class TestTokenFamilyTable:
    @pytest.mark.asyncio
    async def test_create_and_get(self, user_store: UserStore, user: User) -> None:
        family = await user_store.create_family(user.id, "fam-1")
        fetched = await user_store.get_family("fam-1")
        assert fetched == family
        assert fetched.user_id == user.id

    @pytest.mark.asyncio
    async def test_family_id_unique(self, user_store: UserStore, user: User) -> None:
        await user_store.create_family(user.id, "fam-1")
        with pytest.raises(IntegrityError):
            await user_store.create_family(user.id, "fam-1")

    @pytest.mark.asyncio
    async def test_touch(self, user_store: UserStore, user: User) -> None:
        family = await user_store.create_family(user.id, "fam-1")
        assert await user_store.touch_family("fam-1") is True
        assert (await user_store.get_family("fam-1")).updated_at >= family.updated_at
        assert await user_store.touch_family("missing") is False

    @pytest.mark.asyncio
    async def test_delete_one(self, user_store: UserStore, user: User) -> None:
        await user_store.create_family(user.id, "fam-1")
        assert await user_store.delete_family("fam-1") is True
        assert await user_store.get_family("fam-1") is None
        assert await user_store.delete_family("fam-1") is False

    @pytest.mark.asyncio
    async def test_delete_all_for_user_only(self, user_store: UserStore, user: User) -> None:
        other = await user_store.create_user(User(email="other@example.com"))
        await user_store.create_family(user.id, "a")
        await user_store.create_family(user.id, "b")
        await user_store.create_family(other.id, "c")

        assert await user_store.delete_user_families(user.id) == 2
        assert await user_store.list_user_families(user.id) == []
        assert [f.family_id for f in await user_store.list_user_families(other.id)] == ["c"]
