"""
tests/test_access_requests.py -- Tests for the access-request state machine.

Covers:
  - Submission validation and name splitting
  - Uniqueness: one pending request per email; existing members refused
  - Approve provisions User + UserProfile and records who processed it
  - Approve/reject exactly once (InvalidState on the second attempt)
  - Approve atomicity: a failing profile insert leaves no user and no status change
  - Read operations
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

import membership.store
from auth.accounts import AccountService
from auth.passwords import verify_password
from auth.store import UserStore
from conftest import make_user
from core.errors import Conflict, InvalidState, NotFound, StoreFailure, ValidationError
from membership.models import STATUS_APPROVED, STATUS_PENDING, STATUS_REJECTED, AccessRequest, Submission
from membership.service import AccessRequestService, split_name
from membership.store import AccessRequestStore


def _submission(**overrides) -> Submission:
    values = dict(name="Jane Doe", email="jane@example.com", zip_code="94107", reason="I run the book club.")
    values.update(overrides)
    return Submission(**values)


class TestSplitName:
    def test_two_words(self) -> None:
        assert split_name("Jane Doe") == ("Jane", "Doe")

    def test_multi_word_last_name(self) -> None:
        assert split_name("  Ana  de la Cruz ") == ("Ana", "de la Cruz")

    def test_single_word(self) -> None:
        assert split_name("Cher") == ("Cher", "")


class TestSubmit:
    def test_creates_pending_request(self, access_service: AccessRequestService) -> None:
        request = access_service.submit(_submission())
        assert request.status == STATUS_PENDING
        assert (request.first_name, request.last_name) == ("Jane", "Doe")
        assert request.zip_code == "94107"
        assert request.processed_at is None

    def test_email_normalized(self, access_service: AccessRequestService) -> None:
        request = access_service.submit(_submission(email="  Jane@Example.COM "))
        assert request.email == "jane@example.com"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"name": ""},
            {"email": ""},
            {"reason": ""},
            {"email": "not-an-email"},
            {"zip_code": "9410"},
            {"zip_code": "abcde"},
        ],
    )
    def test_invalid_submission(self, access_service: AccessRequestService, overrides: dict) -> None:
        with pytest.raises(ValidationError) as exc_info:
            access_service.submit(_submission(**overrides))
        assert exc_info.value.fields["name"] == overrides.get("name", "Jane Doe")

    def test_second_pending_request_conflicts(self, access_service: AccessRequestService) -> None:
        access_service.submit(_submission())
        with pytest.raises(Conflict):
            access_service.submit(_submission(name="Jane Again"))

    def test_existing_member_conflicts(self, access_service: AccessRequestService, user_store: UserStore) -> None:
        make_user(user_store, "jane", email="jane@example.com")
        with pytest.raises(Conflict):
            access_service.submit(_submission())

    def test_member_email_differing_in_case_conflicts(
        self, access_service: AccessRequestService, accounts: AccountService, user_store: UserStore
    ) -> None:
        ada = make_user(user_store, "ada")
        accounts.update_account(ada.id, "janedoe", "Jane@Example.com")
        with pytest.raises(Conflict):
            access_service.submit(_submission(email="jane@example.com"))
        assert [u.email for u in user_store.list_users()] == ["jane@example.com"]

    def test_pending_index_backstops_race(self, request_store: AccessRequestStore) -> None:
        """The partial unique index refuses a second pending row even without the service pre-check."""
        request_store.create_request(AccessRequest(email="race@example.com", first_name="A", last_name="B"))
        with pytest.raises(IntegrityError):
            request_store.create_request(AccessRequest(email="race@example.com", first_name="C", last_name="D"))

    def test_rejected_applicant_can_reapply(self, access_service: AccessRequestService, user_store: UserStore) -> None:
        admin = make_user(user_store, "root", is_admin=True)
        first = access_service.submit(_submission())
        access_service.reject(first.id, admin.id, "Not now")
        second = access_service.submit(_submission())
        assert second.id != first.id
        assert second.status == STATUS_PENDING


class TestApprove:
    def test_approve_provisions_member(
        self, access_service: AccessRequestService, user_store: UserStore, request_store: AccessRequestStore
    ) -> None:
        admin = make_user(user_store, "root", is_admin=True)
        request = access_service.submit(_submission(city="San Francisco", state="CA"))

        user = access_service.approve(request.id, admin.id, "janedoe", "secret1", notes="Welcome")

        assert user.username == "janedoe"
        assert user.email == "jane@example.com"
        assert user.is_admin is False
        assert verify_password("secret1", user.password_hash)

        profile = request_store.get_profile(user.id)
        assert (profile.first_name, profile.last_name) == ("Jane", "Doe")
        assert profile.zip == "94107"
        assert profile.city == "San Francisco"

        processed = access_service.get(request.id)
        assert processed.status == STATUS_APPROVED
        assert processed.processed_by == admin.id
        assert processed.processed_at is not None
        assert processed.notes == "Welcome"

    def test_approve_twice_fails(self, access_service: AccessRequestService, user_store: UserStore) -> None:
        admin = make_user(user_store, "root", is_admin=True)
        request = access_service.submit(_submission())
        access_service.approve(request.id, admin.id, "janedoe", "secret1")
        with pytest.raises(InvalidState):
            access_service.approve(request.id, admin.id, "janedoe2", "secret1")
        assert [u.username for u in user_store.list_users()] == ["janedoe", "root"]

    def test_store_rejects_second_transition(
        self, access_service: AccessRequestService, user_store: UserStore, request_store: AccessRequestStore
    ) -> None:
        """The conditional UPDATE alone refuses a second transition (concurrent admin case)."""
        admin = make_user(user_store, "root", is_admin=True)
        request = access_service.submit(_submission())
        request_store.reject(request.id, admin.id)
        with pytest.raises(InvalidState):
            request_store.reject(request.id, admin.id)

    def test_approve_unknown_request(self, access_service: AccessRequestService, user_store: UserStore) -> None:
        admin = make_user(user_store, "root", is_admin=True)
        with pytest.raises(NotFound):
            access_service.approve("missing", admin.id, "janedoe", "secret1")

    @pytest.mark.parametrize("username,password", [("jd", "secret1"), ("Jane Doe", "secret1"), ("janedoe", "12345")])
    def test_approve_validates_credentials(
        self, access_service: AccessRequestService, user_store: UserStore, username: str, password: str
    ) -> None:
        admin = make_user(user_store, "root", is_admin=True)
        request = access_service.submit(_submission())
        with pytest.raises(ValidationError):
            access_service.approve(request.id, admin.id, username, password)
        assert access_service.get(request.id).status == STATUS_PENDING

    def test_approve_username_taken(self, access_service: AccessRequestService, user_store: UserStore) -> None:
        admin = make_user(user_store, "root", is_admin=True)
        request = access_service.submit(_submission())
        with pytest.raises(Conflict):
            access_service.approve(request.id, admin.id, "root", "secret1")
        assert access_service.get(request.id).status == STATUS_PENDING

    def test_approve_is_atomic(
        self,
        access_service: AccessRequestService,
        user_store: UserStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """A failure after the status update and user insert rolls everything back."""
        admin = make_user(user_store, "root", is_admin=True)
        request = access_service.submit(_submission())

        def failing_insert(conn, user_id, request):
            raise OperationalError("INSERT INTO user_profile", {}, Exception("disk I/O error"))

        monkeypatch.setattr(membership.store, "_insert_profile", failing_insert)

        with pytest.raises(StoreFailure):
            access_service.approve(request.id, admin.id, "janedoe", "secret1")

        assert user_store.get_by_username("janedoe") is None
        assert user_store.get_by_email("jane@example.com") is None
        stored = access_service.get(request.id)
        assert stored.status == STATUS_PENDING
        assert stored.processed_by is None


class TestReject:
    def test_reject(self, access_service: AccessRequestService, user_store: UserStore) -> None:
        admin = make_user(user_store, "root", is_admin=True)
        request = access_service.submit(_submission())
        rejected = access_service.reject(request.id, admin.id, "Incomplete")
        assert rejected.status == STATUS_REJECTED
        assert rejected.processed_by == admin.id
        assert rejected.notes == "Incomplete"
        assert user_store.get_by_email("jane@example.com") is None

    def test_reject_then_approve_fails(self, access_service: AccessRequestService, user_store: UserStore) -> None:
        admin = make_user(user_store, "root", is_admin=True)
        request = access_service.submit(_submission())
        access_service.reject(request.id, admin.id)
        with pytest.raises(InvalidState):
            access_service.approve(request.id, admin.id, "janedoe", "secret1")
        with pytest.raises(InvalidState):
            access_service.reject(request.id, admin.id)

    def test_reject_unknown(self, access_service: AccessRequestService, user_store: UserStore) -> None:
        admin = make_user(user_store, "root", is_admin=True)
        with pytest.raises(NotFound):
            access_service.reject("missing", admin.id)


class TestReads:
    def test_list_pending_and_filters(self, access_service: AccessRequestService, user_store: UserStore) -> None:
        admin = make_user(user_store, "root", is_admin=True)
        a = access_service.submit(_submission(email="a@example.com"))
        b = access_service.submit(_submission(email="b@example.com"))
        access_service.reject(b.id, admin.id)

        assert [r.id for r in access_service.list_pending()] == [a.id]
        assert [r.id for r in access_service.list_requests(STATUS_REJECTED)] == [b.id]
        assert {r.id for r in access_service.list_requests()} == {a.id, b.id}

    def test_unknown_status_filter(self, access_service: AccessRequestService) -> None:
        with pytest.raises(ValidationError):
            access_service.list_requests("archived")
