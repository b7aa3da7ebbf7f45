"""Unit tests for UserCRUD operations."""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from app.core.security import hash_password, verify_password
from app.crud.user import user_crud
from app.models.user import User

NOW = datetime(2026, 3, 2, 9, 30, 0)


async def _create_pending(db, email, code_expires_at, session_expires_at, session_hash=None):
    return await user_crud.create(
        db=db,
        email=email,
        password="Correct horse battery 9",
        code_hash="code-hash",
        code_expires_at=code_expires_at,
        session_hash=session_hash or uuid4().hex + uuid4().hex,
        session_expires_at=session_expires_at,
        last_sent_at=code_expires_at - timedelta(minutes=5),
    )


@pytest.mark.unit
@pytest.mark.asyncio
class TestCreateAndLookup:
    async def test_create_hashes_password(self, db_session):
        user = await user_crud.create(db=db_session, email="new@example.com", password="Correct horse battery 9")

        assert user.id is not None
        assert user.password_hash != "Correct horse battery 9"
        assert verify_password("Correct horse battery 9", user.password_hash)
        assert user.email_verified is None
        assert user.is_active is True

    async def test_update_password(self, db_session):
        user = await user_crud.create(db=db_session, email="mover@example.com", password="Correct horse battery 9")

        await user_crud.update_password(db_session, user.id, hash_password("Brand new Secret 42"))
        await db_session.commit()
        await db_session.refresh(user)

        assert verify_password("Brand new Secret 42", user.password_hash)

    async def test_lookup_by_email_and_id(self, db_session):
        user = await user_crud.create(db=db_session, email="find@example.com", password="pw-123456")

        assert (await user_crud.get_by_email(db_session, "find@example.com")).id == user.id
        assert (await user_crud.get_by_id(db_session, user.id)).email == "find@example.com"
        assert await user_crud.get_by_email(db_session, "missing@example.com") is None

    async def test_lookup_by_session_hash(self, db_session):
        user = await _create_pending(db_session, "s@example.com", NOW, NOW, session_hash="f" * 64)

        found = await user_crud.get_by_verification_session_hash(db_session, "f" * 64)
        assert found.id == user.id
        assert await user_crud.get_by_verification_session_hash(db_session, "0" * 64) is None

    async def test_display_name_falls_back_to_local_part(self, db_session):
        user = await user_crud.create(db=db_session, email="jane.doe@example.com", password="pw-123456")
        assert user.display_name == "jane.doe"


@pytest.mark.unit
@pytest.mark.asyncio
class TestVerificationState:
    async def test_update_returns_false_for_missing_user(self, db_session):
        updated = await user_crud.update_verification_state(
            db_session, uuid4(),
            code_hash="h", code_expires_at=NOW, session_hash="s" * 64,
            session_expires_at=NOW, last_sent_at=NOW,
        )
        assert updated is False

    async def test_clear_code_keeps_session(self, db_session):
        user = await _create_pending(db_session, "c@example.com", NOW, NOW + timedelta(minutes=25))

        await user_crud.clear_verification_code(db_session, user.id, "code-hash")
        await db_session.refresh(user)

        assert user.email_verification_code_hash is None
        assert user.email_verification_code_expires_at is None
        assert user.email_verification_session_hash is not None

    async def test_clear_code_ignores_stale_hash(self, db_session):
        user = await _create_pending(db_session, "r@example.com", NOW, NOW)

        # A resend already replaced the code the caller saw
        await user_crud.clear_verification_code(db_session, user.id, "older-hash")
        await db_session.refresh(user)

        assert user.email_verification_code_hash == "code-hash"

    async def test_mark_verified_clears_everything(self, db_session):
        user = await _create_pending(db_session, "v@example.com", NOW, NOW)

        await user_crud.mark_email_verified(db_session, user.id, NOW)
        await db_session.refresh(user)

        assert user.email_verified == NOW
        assert user.is_email_verified
        assert user.email_verification_code_hash is None
        assert user.email_verification_session_hash is None
        assert user.email_verification_last_sent_at is None


@pytest.mark.unit
@pytest.mark.asyncio
class TestPurgeExpired:
    async def test_purges_only_expired_fields(self, db_session):
        expired_both = await _create_pending(db_session, "a@example.com", NOW - timedelta(minutes=1), NOW - timedelta(seconds=1))
        code_only = await _create_pending(db_session, "b@example.com", NOW, NOW + timedelta(minutes=20))
        live = await _create_pending(db_session, "c@example.com", NOW + timedelta(minutes=2), NOW + timedelta(minutes=20))

        codes, sessions = await user_crud.purge_expired_verification_state(db_session, NOW)

        assert (codes, sessions) == (2, 1)
        for user in (expired_both, code_only, live):
            await db_session.refresh(user)

        assert expired_both.email_verification_code_hash is None
        assert expired_both.email_verification_session_hash is None
        assert code_only.email_verification_code_hash is None
        assert code_only.email_verification_session_hash is not None
        assert live.email_verification_code_hash == "code-hash"

    async def test_is_idempotent(self, db_session):
        await _create_pending(db_session, "a@example.com", NOW - timedelta(minutes=1), NOW - timedelta(minutes=1))

        assert await user_crud.purge_expired_verification_state(db_session, NOW) == (1, 1)
        assert await user_crud.purge_expired_verification_state(db_session, NOW) == (0, 0)

    async def test_skips_verified_users(self, db_session):
        user = User(
            email="done@example.com",
            password_hash="x",
            email_verified=NOW - timedelta(days=1),
            email_verification_code_expires_at=NOW - timedelta(days=1),
        )
        db_session.add(user)
        await db_session.commit()

        assert await user_crud.purge_expired_verification_state(db_session, NOW) == (0, 0)
