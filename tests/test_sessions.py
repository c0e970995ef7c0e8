"""Unit tests for auth/sessions.py -- SessionStore lifecycle and context resolution.

Covers:
- create_session(): only the peppered hash is stored; expiry = now + TTL
- resolve_context(): unknown, expired, revoked, and deactivated-user tokens
  all resolve to None; roles and permissions are de-duplicated; the
  resolved context never holds the raw token
- revoke_by_token / revoke_all_for_user idempotency
- rotate_session(): new session with later expiry, old one revoked
"""

from dataclasses import asdict

from sqlalchemy import select

from auth.schema import iso_utc, sessions as sessions_table
from auth.seed import seed_auth
from auth.sessions import SessionStore
from tests.helpers import add_user


class TestCreateSession:
    def test_raw_token_is_not_stored(self, store, sessions, engine) -> None:
        uid = add_user(store, "a@example.com")
        issued = sessions.create_session(uid, "1.2.3.4", "pytest")
        with engine.connect() as conn:
            stored = conn.execute(select(sessions_table.c.token_hash)).scalars().all()
        assert stored and issued.raw_token not in stored

    def test_expiry_is_ttl_from_now(self, store, sessions, clock) -> None:
        uid = add_user(store, "a@example.com")
        issued = sessions.create_session(uid)
        assert issued.expires_at == "2026-01-02T12:00:00.000000Z"

    def test_records_ip_and_user_agent(self, store, sessions) -> None:
        uid = add_user(store, "a@example.com")
        issued = sessions.create_session(uid, "1.2.3.4", "pytest-agent")
        row = sessions.get_session(issued.session_id)
        assert row.ip_address == "1.2.3.4"
        assert row.user_agent == "pytest-agent"
        assert row.revoked_at is None


class TestResolveContext:
    def test_valid_token_resolves(self, store, sessions) -> None:
        uid = add_user(store, "a@example.com")
        issued = sessions.create_session(uid)
        ctx = sessions.resolve_context(issued.raw_token)
        assert ctx is not None
        assert ctx.user.id == uid
        assert ctx.session_id == issued.session_id
        assert ctx.roles == ()
        assert ctx.permissions == ()

    def test_context_does_not_carry_raw_token(self, store, sessions) -> None:
        issued = sessions.create_session(add_user(store, "a@example.com"))
        ctx = sessions.resolve_context(issued.raw_token)
        assert issued.raw_token not in str(asdict(ctx))

    def test_none_and_unknown_tokens(self, sessions) -> None:
        assert sessions.resolve_context(None) is None
        assert sessions.resolve_context("") is None
        assert sessions.resolve_context("f" * 64) is None

    def test_expired_session(self, store, sessions, clock) -> None:
        uid = add_user(store, "a@example.com")
        issued = sessions.create_session(uid)
        clock.advance(hours=24)
        assert sessions.resolve_context(issued.raw_token) is None

    def test_revoked_session(self, store, sessions) -> None:
        uid = add_user(store, "a@example.com")
        issued = sessions.create_session(uid)
        assert sessions.revoke_by_token(issued.raw_token) is True
        assert sessions.resolve_context(issued.raw_token) is None

    def test_deactivated_user(self, store, sessions) -> None:
        uid = add_user(store, "a@example.com")
        issued = sessions.create_session(uid)
        store.update_user(uid, is_active=False)
        assert sessions.resolve_context(issued.raw_token) is None

    def test_other_pepper_cannot_resolve(self, store, sessions, engine, clock) -> None:
        uid = add_user(store, "a@example.com")
        issued = sessions.create_session(uid)
        other = SessionStore(engine, pepper="different", clock=clock)
        assert other.resolve_context(issued.raw_token) is None

    def test_roles_and_permissions_deduplicated(self, store, sessions, engine) -> None:
        seed_auth(engine, bcrypt_rounds=4)
        uid = add_user(store, "a@example.com")
        manager = store.get_role_by_name("MANAGER")
        analyst = store.get_role_by_name("ANALYST")
        store.assign_role_to_user(uid, manager.id, assigned_by=None)
        store.assign_role_to_user(uid, analyst.id, assigned_by=None)
        issued = sessions.create_session(uid)

        ctx = sessions.resolve_context(issued.raw_token)
        assert sorted(ctx.roles) == ["ANALYST", "MANAGER"]
        assert sorted(ctx.permissions) == ["investments:read", "investments:write"]


class TestRevocation:
    def test_revoke_twice_is_noop(self, store, sessions) -> None:
        uid = add_user(store, "a@example.com")
        issued = sessions.create_session(uid)
        assert sessions.revoke_by_token(issued.raw_token) is True
        assert sessions.revoke_by_token(issued.raw_token) is False

    def test_revoke_unknown_token_is_noop(self, sessions) -> None:
        assert sessions.revoke_by_token("0" * 64) is False

    def test_revoke_all_for_user(self, store, sessions) -> None:
        uid = add_user(store, "a@example.com")
        other = add_user(store, "b@example.com")
        tokens = [sessions.create_session(uid).raw_token for _ in range(3)]
        survivor = sessions.create_session(other).raw_token

        assert sessions.revoke_all_for_user(uid) == 3
        assert all(sessions.resolve_context(t) is None for t in tokens)
        assert sessions.resolve_context(survivor) is not None
        assert sessions.revoke_all_for_user(uid) == 0

    def test_revoked_at_is_stamped(self, store, sessions, clock) -> None:
        uid = add_user(store, "a@example.com")
        issued = sessions.create_session(uid)
        clock.advance(minutes=5)
        sessions.revoke_by_id(issued.session_id)
        assert sessions.get_session(issued.session_id).revoked_at == iso_utc(clock())


class TestRotation:
    def test_rotation_extends_expiry_and_revokes_old(self, store, sessions, clock) -> None:
        uid = add_user(store, "a@example.com")
        first = sessions.create_session(uid)
        ctx = sessions.resolve_context(first.raw_token)

        clock.advance(hours=2)
        second = sessions.rotate_session(ctx, "1.2.3.4", "pytest")

        assert second.session_id != first.session_id
        assert second.expires_at > first.expires_at
        assert sessions.resolve_context(first.raw_token) is None
        assert sessions.resolve_context(second.raw_token).user.id == uid

    def test_rotation_leaves_other_sessions(self, store, sessions) -> None:
        uid = add_user(store, "a@example.com")
        laptop = sessions.create_session(uid)
        phone = sessions.create_session(uid)
        sessions.rotate_session(sessions.resolve_context(laptop.raw_token))
        assert sessions.resolve_context(phone.raw_token) is not None
