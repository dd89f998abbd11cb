"""
tests/test_accounts.py -- Unit tests for auth/accounts.py (AccountService).

Covers:
  - Login by username or email, bad credentials, legacy digest upgrade
  - Password change revokes every session and issues a fresh one
  - Account update: uniqueness conflicts, optional password change
  - Account deletion: password check, last-admin guard, cascade
  - Admin user management: last-admin demotion guard, self-deletion guard
  - Dev-only admin bootstrap gated by the shared secret
"""

from __future__ import annotations

import pytest

from auth.accounts import AccountService
from auth.gate import ANONYMOUS, Identity
from auth.models import User
from auth.passwords import legacy_digest, verify_password
from auth.sessions import SessionManager, generate_session_token
from auth.store import UserStore
from conftest import make_user
from core.config import Settings
from core.errors import Conflict, Forbidden, InvalidCredentials, InvalidState, NotFound, ValidationError


class TestLogin:
    def test_login_by_username(self, user_store: UserStore, accounts: AccountService) -> None:
        user = make_user(user_store, "ada", "password123")
        token, session, found = accounts.login("ada", "password123")
        assert found.id == user.id
        assert accounts.sessions.validate_session(token) is not None
        assert session.user_id == user.id

    def test_login_by_email(self, user_store: UserStore, accounts: AccountService) -> None:
        user = make_user(user_store, "ada", "password123", email="ada@lovelace.org")
        _token, _session, found = accounts.login("ada@lovelace.org", "password123")
        assert found.id == user.id

    def test_login_by_email_ignores_case(self, user_store: UserStore, accounts: AccountService) -> None:
        make_user(user_store, "ada", "password123")
        _token, _session, user = accounts.login(" ADA@Example.com", "password123")
        assert user.username == "ada"

    def test_wrong_password_creates_no_session(self, user_store: UserStore, accounts: AccountService) -> None:
        user = make_user(user_store, "ada", "password123")
        with pytest.raises(InvalidCredentials):
            accounts.login("ada", "wrong-password")
        assert user_store.list_user_sessions(user.id) == []

    def test_unknown_user_same_message(self, user_store: UserStore, accounts: AccountService) -> None:
        make_user(user_store, "ada", "password123")
        with pytest.raises(InvalidCredentials) as unknown:
            accounts.login("nobody", "password123")
        with pytest.raises(InvalidCredentials) as wrong:
            accounts.login("ada", "nope")
        assert unknown.value.message == wrong.value.message

    def test_legacy_digest_upgraded_on_login(self, user_store: UserStore, accounts: AccountService) -> None:
        user_id = user_store.create_user(
            User(username="old", email="old@example.com", password_hash=legacy_digest("secret1"))
        )
        accounts.login("old", "secret1")
        stored = user_store.get_by_id(user_id).password_hash
        assert stored.startswith("$argon2id$")
        assert verify_password("secret1", stored)

    def test_logout_invalidates_session(self, user_store: UserStore, accounts: AccountService) -> None:
        make_user(user_store, "ada", "password123")
        token, session, user = accounts.login("ada", "password123")
        accounts.logout(Identity(user=user, session=session))
        assert accounts.sessions.validate_session(token) is None

    def test_logout_without_session_is_noop(self, accounts: AccountService) -> None:
        accounts.logout(ANONYMOUS)


class TestChangePassword:
    def test_revokes_all_sessions_and_issues_new(
        self, user_store: UserStore, sessions: SessionManager, accounts: AccountService
    ) -> None:
        user = make_user(user_store, "ada", "password123")
        old_tokens = [generate_session_token() for _ in range(2)]
        for t in old_tokens:
            sessions.create_session(t, user.id)

        new_token, _session = accounts.change_password(user.id, "password123", "newpassword1", "newpassword1")

        assert all(sessions.validate_session(t) is None for t in old_tokens)
        assert sessions.validate_session(new_token) is not None
        assert len(user_store.list_user_sessions(user.id)) == 1
        accounts.login("ada", "newpassword1")

    def test_wrong_current_password(self, user_store: UserStore, accounts: AccountService) -> None:
        user = make_user(user_store, "ada", "password123")
        with pytest.raises(InvalidCredentials):
            accounts.change_password(user.id, "wrong", "newpassword1", "newpassword1")

    def test_mismatched_confirmation(self, user_store: UserStore, accounts: AccountService) -> None:
        user = make_user(user_store, "ada", "password123")
        with pytest.raises(ValidationError):
            accounts.change_password(user.id, "password123", "newpassword1", "newpassword2")

    def test_too_short(self, user_store: UserStore, accounts: AccountService) -> None:
        user = make_user(user_store, "ada", "password123")
        with pytest.raises(ValidationError):
            accounts.change_password(user.id, "password123", "short", "short")


class TestUpdateAccount:
    def test_update_username_and_email(self, user_store: UserStore, accounts: AccountService) -> None:
        user = make_user(user_store, "ada")
        updated, changed = accounts.update_account(user.id, "ada2", "ada2@example.com")
        assert (updated.username, updated.email, changed) == ("ada2", "ada2@example.com", False)

    def test_username_taken(self, user_store: UserStore, accounts: AccountService) -> None:
        user = make_user(user_store, "ada")
        make_user(user_store, "bob")
        with pytest.raises(Conflict):
            accounts.update_account(user.id, "bob", "ada@example.com")

    def test_email_taken(self, user_store: UserStore, accounts: AccountService) -> None:
        user = make_user(user_store, "ada")
        make_user(user_store, "bob")
        with pytest.raises(Conflict):
            accounts.update_account(user.id, "ada", "bob@example.com")

    def test_password_change_invalidates_sessions(
        self, user_store: UserStore, sessions: SessionManager, accounts: AccountService
    ) -> None:
        user = make_user(user_store, "ada", "password123")
        token = generate_session_token()
        sessions.create_session(token, user.id)
        _updated, changed = accounts.update_account(
            user.id, "ada", "ada@example.com",
            current_password="password123", new_password="brandnew", confirm_password="brandnew",
        )
        assert changed
        assert sessions.validate_session(token) is None

    def test_email_stored_lowercase(self, user_store: UserStore, accounts: AccountService) -> None:
        user = make_user(user_store, "ada")
        updated, _ = accounts.update_account(user.id, "ada", "  Ada@Example.COM ")
        assert updated.email == "ada@example.com"

    def test_email_taken_ignores_case(self, user_store: UserStore, accounts: AccountService) -> None:
        user = make_user(user_store, "ada")
        make_user(user_store, "bob")
        with pytest.raises(Conflict):
            accounts.update_account(user.id, "ada", "BOB@example.com")

    def test_password_change_requires_current(self, user_store: UserStore, accounts: AccountService) -> None:
        user = make_user(user_store, "ada", "password123")
        with pytest.raises(ValidationError):
            accounts.update_account(user.id, "ada", "ada@example.com", new_password="brandnew", confirm_password="brandnew")


class TestDeleteAccount:
    def test_delete_cascades(self, user_store: UserStore, sessions: SessionManager, accounts: AccountService) -> None:
        user = make_user(user_store, "ada", "password123")
        sessions.create_session(generate_session_token(), user.id)
        accounts.delete_account(user.id, "password123", confirmed=True)
        assert user_store.get_by_id(user.id) is None
        assert user_store.list_user_sessions(user.id) == []

    def test_requires_confirmation(self, user_store: UserStore, accounts: AccountService) -> None:
        user = make_user(user_store, "ada", "password123")
        with pytest.raises(ValidationError):
            accounts.delete_account(user.id, "password123", confirmed=False)

    def test_wrong_password(self, user_store: UserStore, accounts: AccountService) -> None:
        user = make_user(user_store, "ada", "password123")
        with pytest.raises(InvalidCredentials):
            accounts.delete_account(user.id, "nope", confirmed=True)
        assert user_store.get_by_id(user.id) is not None

    def test_last_admin_cannot_delete_self(self, user_store: UserStore, accounts: AccountService) -> None:
        admin = make_user(user_store, "root", "password123", is_admin=True)
        with pytest.raises(InvalidState):
            accounts.delete_account(admin.id, "password123", confirmed=True)
        assert user_store.get_by_id(admin.id) is not None

    def test_store_refuses_last_admin_delete(self, user_store: UserStore) -> None:
        admin = make_user(user_store, "root", is_admin=True)
        with pytest.raises(InvalidState, match="last admin"):
            user_store.delete_user(admin.id)
        assert user_store.count_admins() == 1

    def test_admin_can_leave_when_another_remains(self, user_store: UserStore, accounts: AccountService) -> None:
        first = make_user(user_store, "root", "password123", is_admin=True)
        make_user(user_store, "root2", is_admin=True)
        accounts.delete_account(first.id, "password123", confirmed=True)
        assert user_store.count_admins() == 1


class TestAdminOperations:
    def test_sole_admin_cannot_be_demoted(self, user_store: UserStore, accounts: AccountService) -> None:
        admin = make_user(user_store, "root", is_admin=True)
        with pytest.raises(InvalidState, match="Cannot remove admin status from the last admin"):
            accounts.toggle_admin(admin.id, admin.id)
        assert user_store.count_admins() == 1

    def test_promote_then_demote(self, user_store: UserStore, accounts: AccountService) -> None:
        admin = make_user(user_store, "root", is_admin=True)
        member = make_user(user_store, "ada")
        assert accounts.toggle_admin(admin.id, member.id).is_admin
        assert user_store.count_admins() == 2
        assert not accounts.toggle_admin(admin.id, admin.id).is_admin
        assert user_store.count_admins() == 1

    def test_toggle_unknown_user(self, user_store: UserStore, accounts: AccountService) -> None:
        admin = make_user(user_store, "root", is_admin=True)
        with pytest.raises(NotFound):
            accounts.toggle_admin(admin.id, "missing")

    def test_admin_cannot_delete_self(self, user_store: UserStore, accounts: AccountService) -> None:
        admin = make_user(user_store, "root", is_admin=True)
        with pytest.raises(ValidationError):
            accounts.delete_user(admin.id, admin.id)

    def test_delete_user(self, user_store: UserStore, accounts: AccountService) -> None:
        admin = make_user(user_store, "root", is_admin=True)
        member = make_user(user_store, "ada")
        accounts.delete_user(admin.id, member.id)
        assert user_store.get_by_id(member.id) is None
        with pytest.raises(NotFound):
            accounts.delete_user(admin.id, member.id)

    def test_list_users(self, user_store: UserStore, accounts: AccountService) -> None:
        make_user(user_store, "bob")
        make_user(user_store, "ada")
        assert [u.username for u in accounts.list_users()] == ["ada", "bob"]


class TestBootstrapAdmin:
    def test_creates_admin(self, user_store: UserStore, accounts: AccountService) -> None:
        user = accounts.bootstrap_admin("root", "root@example.com", "rootpass", "bootstrap-secret")
        assert user.is_admin
        assert user_store.count_admins() == 1

    def test_email_normalized(self, accounts: AccountService) -> None:
        user = accounts.bootstrap_admin("root", "Root@Example.com", "rootpass", "bootstrap-secret")
        assert user.email == "root@example.com"

    def test_wrong_secret(self, accounts: AccountService) -> None:
        with pytest.raises(Forbidden):
            accounts.bootstrap_admin("root", "root@example.com", "rootpass", "guess")

    def test_refused_outside_debug(self, user_store: UserStore, sessions: SessionManager) -> None:
        prod = Settings(debug=False, turnstile_secret_key="x", admin_bootstrap_secret="bootstrap-secret")
        service = AccountService(user_store, sessions, prod)
        with pytest.raises(Forbidden):
            service.bootstrap_admin("root", "root@example.com", "rootpass", "bootstrap-secret")
        assert user_store.count_admins() == 0

    def test_duplicate_username(self, user_store: UserStore, accounts: AccountService) -> None:
        make_user(user_store, "root")
        with pytest.raises(Conflict):
            accounts.bootstrap_admin("root", "other@example.com", "rootpass", "bootstrap-secret")

    def test_invalid_username(self, accounts: AccountService) -> None:
        with pytest.raises(ValidationError):
            accounts.bootstrap_admin("Root!", "root@example.com", "rootpass", "bootstrap-secret")
