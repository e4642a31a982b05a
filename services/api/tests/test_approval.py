"""
Tests for the approval state machine (service + storage).

Run with: pytest tests/test_approval.py -v
"""
import asyncio
from datetime import timedelta

import pytest

from core import security
from core.approval import ApprovalService, PinAttemptTracker
from core.errors import (
    ConflictError,
    EmailDeliveryError,
    InvalidPinError,
    NotFoundError,
    TooManyAttemptsError,
    ValidationError,
)
from models import (
    ApprovalRequest,
    ProjectEvent,
    ProjectStatus,
    RequestEvent,
    RequestState,
    next_project_status,
    next_request_state,
)

CLIENT = "client@example.com"


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def owner(storage):
    return storage.get_or_create_user("agency@example.com")


@pytest.fixture
def project(storage, owner):
    return storage.create_project(owner["id"], "Acme", "https://acme.test")


@pytest.fixture
def service(storage, clock):
    return ApprovalService(
        storage,
        web_base_url="http://review.test/",
        dev_fallback=True,
        attempts=PinAttemptTracker(max_attempts=3, window_seconds=60),
        clock=clock,
    )


def token_of(result):
    return result.approval_url.rsplit("/", 1)[1]


def request_row(storage, result):
    return storage.get_approval_request_by_token(token_of(result))


class TestTransitionTables:
    """Tests for the declared legal transitions."""

    def test_project_approve_only_from_in_review(self):
        """APPROVED is terminal."""
        assert next_project_status(ProjectStatus.IN_REVIEW, ProjectEvent.APPROVE) == ProjectStatus.APPROVED
        assert next_project_status(ProjectStatus.APPROVED, ProjectEvent.APPROVE) is None

    def test_request_transitions_only_from_active(self):
        """Every dead state rejects every event."""
        assert next_request_state(RequestState.ACTIVE, RequestEvent.CONFIRM) == RequestState.CONSUMED
        assert next_request_state(RequestState.ACTIVE, RequestEvent.SUPERSEDE) == RequestState.SUPERSEDED
        for dead in (RequestState.CONSUMED, RequestState.SUPERSEDED, RequestState.EXPIRED):
            for event in RequestEvent:
                assert next_request_state(dead, event) is None


class TestPinHelpers:
    """Tests for PIN generation and hashing."""

    def test_pin_is_six_digits(self):
        """PINs are always 6 numeric characters."""
        for _ in range(50):
            pin = security.generate_pin()
            assert len(pin) == 6 and pin.isdigit()

    def test_hash_is_salted_and_verifiable(self):
        """The same PIN hashes differently each time but verifies."""
        a, b = security.hash_pin("123456"), security.hash_pin("123456")
        assert a != b
        assert "123456" not in a
        assert security.verify_pin(a, "123456")
        assert security.verify_pin(a, 123456)
        assert not security.verify_pin(a, "654321")
        assert not security.verify_pin(a, None)
        assert not security.verify_pin(a, "12345")


class TestRequestApproval:
    """Tests for RequestApproval."""

    def test_dev_fallback_returns_pin(self, service, storage, project, owner, clock):
        """Without a transport in development the PIN comes back directly."""
        result = run(service.request_approval(project["id"], owner["id"], CLIENT))
        assert result.dev_pin and len(result.dev_pin) == 6
        assert result.approval_url.startswith("http://review.test/approve/")
        assert result.expires_at == clock.now + timedelta(hours=24)

        row = request_row(storage, result)
        assert row["email"] == CLIENT
        assert row["used_at"] is None
        assert row["pin_hash"] != result.dev_pin

    def test_requires_recipient(self, service, project, owner):
        """No email is a ValidationError."""
        with pytest.raises(ValidationError):
            run(service.request_approval(project["id"], owner["id"], None))

    def test_other_owner_gets_not_found(self, service, storage, project):
        """Ownership mismatch looks like a missing project."""
        rival = storage.get_or_create_user("rival@example.com")
        with pytest.raises(NotFoundError):
            run(service.request_approval(project["id"], rival["id"], CLIENT))

    def test_no_transport_outside_development_fails(self, storage, project, owner, clock):
        """The fallback is development only; production surfaces the failure."""
        svc = ApprovalService(storage, web_base_url="http://review.test", clock=clock)
        with pytest.raises(EmailDeliveryError) as exc:
            run(svc.request_approval(project["id"], owner["id"], CLIENT))
        assert exc.value.status_code == 500

    def test_send_failure_is_explicit(self, storage, project, owner, clock):
        """A sender returning False becomes EmailDeliveryError."""
        async def failing_send(to_email, project_name, approval_url, pin):
            return False

        svc = ApprovalService(storage, web_base_url="http://review.test", send_email=failing_send, clock=clock)
        with pytest.raises(EmailDeliveryError):
            run(svc.request_approval(project["id"], owner["id"], CLIENT))

    def test_email_carries_url_and_pin(self, storage, project, owner, clock):
        """The PIN leaves only through the email, never in the result."""
        sent = []

        async def send(to_email, project_name, approval_url, pin):
            sent.append((to_email, project_name, approval_url, pin))
            return True

        svc = ApprovalService(storage, web_base_url="http://review.test", send_email=send, clock=clock)
        result = run(svc.request_approval(project["id"], owner["id"], CLIENT))
        assert result.dev_pin is None
        assert sent[0][0] == CLIENT
        assert sent[0][1] == "Acme"
        assert sent[0][2] == result.approval_url
        assert svc.confirm_approval(token_of(result), sent[0][3]) == {"ok": True}

    def test_new_request_supersedes_previous(self, service, storage, project, owner):
        """Requesting again kills every earlier live request."""
        first = run(service.request_approval(project["id"], owner["id"], CLIENT))
        second = run(service.request_approval(project["id"], owner["id"], CLIENT))

        old = ApprovalRequest.from_storage(request_row(storage, first))
        assert old.state(service.clock()) == RequestState.SUPERSEDED
        with pytest.raises(NotFoundError):
            service.confirm_approval(token_of(first), first.dev_pin)
        assert service.confirm_approval(token_of(second), second.dev_pin) == {"ok": True}

    def test_already_approved_conflicts(self, service, project, owner):
        """No new request once the project is approved."""
        result = run(service.request_approval(project["id"], owner["id"], CLIENT))
        service.confirm_approval(token_of(result), result.dev_pin)
        with pytest.raises(ConflictError) as exc:
            run(service.request_approval(project["id"], owner["id"], CLIENT))
        assert exc.value.status_code == 400


class TestGetApprovalInfo:
    """Tests for GetApprovalInfo."""

    def test_active_token(self, service, storage, project, owner):
        """Live token shows project, request and feedback token."""
        storage.upsert_feedback_link(project["id"], "fb-token")
        result = run(service.request_approval(project["id"], owner["id"], CLIENT))
        info = service.get_approval_info(token_of(result))
        assert info["project"]["id"] == project["id"]
        assert info["project"]["status"] == "IN_REVIEW"
        assert info["project"]["approvedAt"] is None
        assert info["request"]["state"] == "ACTIVE"
        assert info["commentToken"] == "fb-token"

    def test_revoked_feedback_link_not_offered(self, service, storage, project, owner):
        """An inactive link is not a way back to commenting."""
        storage.upsert_feedback_link(project["id"], "fb-token")
        storage.deactivate_feedback_link(project["id"])
        result = run(service.request_approval(project["id"], owner["id"], CLIENT))
        assert service.get_approval_info(token_of(result))["commentToken"] is None

    def test_unknown_token(self, service):
        """Absent tokens are 404."""
        with pytest.raises(NotFoundError):
            service.get_approval_info("nope")

    def test_expired_token(self, service, project, owner, clock):
        """Expired looks exactly like absent."""
        result = run(service.request_approval(project["id"], owner["id"], CLIENT))
        clock.now += timedelta(hours=24, seconds=1)
        with pytest.raises(NotFoundError) as exc:
            service.get_approval_info(token_of(result))
        assert exc.value.detail == "Not found"

    def test_approved_project_visible_after_expiry(self, service, project, owner, clock):
        """Approval is sticky: the stale link still shows success."""
        result = run(service.request_approval(project["id"], owner["id"], CLIENT))
        service.confirm_approval(token_of(result), result.dev_pin)
        clock.now += timedelta(days=30)
        info = service.get_approval_info(token_of(result))
        assert info["project"]["status"] == "APPROVED"
        assert info["project"]["approvedAt"].endswith("Z")


class TestConfirmApproval:
    """Tests for ConfirmApproval."""

    def test_correct_pin_approves_and_consumes(self, service, storage, project, owner, clock):
        """Project and request change together."""
        result = run(service.request_approval(project["id"], owner["id"], CLIENT))
        assert service.confirm_approval(token_of(result), result.dev_pin) == {"ok": True}

        p = storage.get_project(project["id"])
        assert p["status"] == "APPROVED"
        assert p["approved_at"] == clock.now
        req = ApprovalRequest.from_storage(request_row(storage, result))
        assert req.used_at == clock.now
        assert req.state(clock.now) == RequestState.CONSUMED

    def test_idempotent(self, service, project, owner, clock):
        """Re-confirming after success is success, even with a wrong PIN or later."""
        result = run(service.request_approval(project["id"], owner["id"], CLIENT))
        token = token_of(result)
        assert service.confirm_approval(token, result.dev_pin) == {"ok": True}
        assert service.confirm_approval(token, result.dev_pin) == {"ok": True}
        clock.now += timedelta(days=2)
        assert service.confirm_approval(token, "000000") == {"ok": True}

    def test_wrong_pin(self, service, storage, project, owner):
        """Mismatch is InvalidPin (400) and changes nothing."""
        result = run(service.request_approval(project["id"], owner["id"], CLIENT))
        with pytest.raises(InvalidPinError) as exc:
            service.confirm_approval(token_of(result), "000000")
        assert exc.value.status_code == 400
        assert storage.get_project(project["id"])["status"] == "IN_REVIEW"
        assert request_row(storage, result)["used_at"] is None

    def test_expired_token_is_not_found(self, service, project, owner, clock):
        """now > expiresAt is NotFound, not InvalidPin."""
        result = run(service.request_approval(project["id"], owner["id"], CLIENT))
        clock.now += timedelta(hours=25)
        with pytest.raises(NotFoundError):
            service.confirm_approval(token_of(result), result.dev_pin)

    def test_unknown_token(self, service):
        """Absent token is NotFound."""
        with pytest.raises(NotFoundError):
            service.confirm_approval("missing", "123456")

    def test_too_many_attempts(self, service, storage, project, owner):
        """After the limit even the right PIN is refused for the window."""
        result = run(service.request_approval(project["id"], owner["id"], CLIENT))
        token = token_of(result)
        for _ in range(3):
            with pytest.raises(InvalidPinError):
                service.confirm_approval(token, "000000")
        with pytest.raises(TooManyAttemptsError) as exc:
            service.confirm_approval(token, result.dev_pin)
        assert exc.value.status_code == 429
        assert storage.get_project(project["id"])["status"] == "IN_REVIEW"

    def test_success_clears_failure_count(self, service, project, owner):
        """A correct PIN resets the counter."""
        result = run(service.request_approval(project["id"], owner["id"], CLIENT))
        token = token_of(result)
        for _ in range(2):
            with pytest.raises(InvalidPinError):
                service.confirm_approval(token, "000000")
        service.confirm_approval(token, result.dev_pin)
        service.attempts.check(token)


class _RacingStorage:
    """Runs a rival operation just before approve_project writes."""

    def __init__(self, inner, rival):
        self.inner = inner
        self.rival = rival

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def approve_project(self, **kwargs):
        self.rival()
        return self.inner.approve_project(**kwargs)


class TestConcurrency:
    """Tests for the write-level concurrency guard."""

    def test_approve_project_only_once(self, storage, project, owner, clock, service):
        """A second consume of the same request writes nothing."""
        result = run(service.request_approval(project["id"], owner["id"], CLIENT))
        req_id = request_row(storage, result)["id"]
        assert storage.approve_project(project_id=project["id"], request_id=req_id, now=clock.now) is True
        assert storage.approve_project(project_id=project["id"], request_id=req_id, now=clock.now) is False

    def test_concurrent_confirms_both_see_success_once(self, storage, project, owner, clock, service):
        """Two confirms race: one writes, the other settles on the winner's state."""
        result = run(service.request_approval(project["id"], owner["id"], CLIENT))
        token = token_of(result)

        rival = lambda: service.confirm_approval(token, result.dev_pin)
        racer = ApprovalService(
            _RacingStorage(storage, rival), web_base_url="http://review.test", clock=clock
        )
        assert racer.confirm_approval(token, result.dev_pin) == {"ok": True}

        req = request_row(storage, result)
        assert req["used_reason"] == "CONSUMED"
        assert storage.get_project(project["id"])["status"] == "APPROVED"

    def test_confirm_loses_to_new_request(self, storage, project, owner, clock, service):
        """A request landing between PIN check and write makes the confirm fail closed."""
        first = run(service.request_approval(project["id"], owner["id"], CLIENT))
        token = token_of(first)
        issued = []

        def rival():
            issued.append(run(service.request_approval(project["id"], owner["id"], CLIENT)))

        racer = ApprovalService(
            _RacingStorage(storage, rival), web_base_url="http://review.test", clock=clock
        )
        with pytest.raises(NotFoundError):
            racer.confirm_approval(token, first.dev_pin)

        # the partial project update was rolled back with the failed consume
        p = storage.get_project(project["id"])
        assert p["status"] == "IN_REVIEW"
        assert p["approved_at"] is None
        assert request_row(storage, first)["used_reason"] == "SUPERSEDED"
        assert service.confirm_approval(token_of(issued[0]), issued[0].dev_pin) == {"ok": True}
