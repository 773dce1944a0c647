"""Tests for the session controller state machine."""

import asyncio

import pytest

from sipsession.controller import SessionController
from sipsession.errors import (
    CallAlreadyActive,
    InvalidCredentials,
    InvalidTarget,
    NoActiveCall,
    NotRegistered,
    ProviderUnavailable,
    ValidationError,
)
from sipsession.models import (
    CallState,
    CallTarget,
    Credentials,
    RegistrationState,
    SessionStatus,
    StatusKind,
    Transition,
)
from sipsession.provider import ProviderHandle

from fakes import RecordingProvider

ALICE = Credentials(username="alice", domain="sip.example.com", password="pw")


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def provider():
    return RecordingProvider()


@pytest.fixture
def controller(provider):
    return SessionController(ProviderHandle.of(provider))


def register(controller):
    """Bring the controller to the registered state."""
    run(controller.login(ALICE))
    controller.apply(Transition(
        registration=RegistrationState.REGISTERED,
        status=SessionStatus.success("Registered successfully"),
    ))


def test_initial_state(controller):
    """Test session starts unregistered and idle."""
    assert controller.registration_state == RegistrationState.UNREGISTERED
    assert controller.call_state == CallState.IDLE
    assert controller.current_status().message == "Not connected"
    assert len(controller.status_history()) == 1


def test_login_issues_register(controller, provider):
    """Test login moves to registering and calls the provider once."""
    ack = run(controller.login(ALICE))

    assert ack.accepted
    assert provider.calls == [("register", ("alice", "sip.example.com", "pw"))]
    assert controller.registration_state == RegistrationState.REGISTERING
    assert controller.current_status().message == "Registering..."


def test_login_adds_one_status(controller):
    """Test entering registering records exactly one status."""
    before = len(controller.status_history())

    run(controller.login(ALICE))

    assert [s.message for s in controller.status_history()[before:]] == ["Registering..."]


def test_login_strips_username_and_domain(controller, provider):
    """Test surrounding whitespace is not sent to the provider."""
    run(controller.login(Credentials(username=" alice ", domain=" sip.example.com\n", password="pw")))

    assert provider.calls == [("register", ("alice", "sip.example.com", "pw"))]


def test_login_does_not_keep_credentials(controller):
    """Test the controller holds no reference to the password."""
    run(controller.login(ALICE))
    assert not any(isinstance(v, Credentials) for v in vars(controller).values())


def test_login_requires_all_fields(controller, provider):
    """Test empty credential fields are rejected before the provider."""
    with pytest.raises(InvalidCredentials):
        run(controller.login(Credentials(username="alice", domain="", password="pw")))

    assert provider.calls == []
    assert controller.registration_state == RegistrationState.UNREGISTERED
    assert controller.current_status().kind == StatusKind.ERROR
    assert controller.current_status().message == "Fill all SIP login fields"


def test_login_invalid_credentials_is_validation_error(controller):
    """Test invalid credentials belong to the validation family."""
    with pytest.raises(ValidationError):
        run(controller.login(Credentials()))


def test_login_when_registered_is_noop(controller, provider):
    """Test login while registered does not reach the provider again."""
    register(controller)
    before = provider.count("register")

    ack = run(controller.login(ALICE))

    assert not ack.accepted
    assert provider.count("register") == before
    assert controller.registration_state == RegistrationState.REGISTERED
    assert controller.current_status().message == "Already registered"


def test_login_without_provider():
    """Test login fails fast when the provider is absent."""
    controller = SessionController(ProviderHandle.absent())

    with pytest.raises(ProviderUnavailable):
        run(controller.login(ALICE))

    assert controller.registration_state == RegistrationState.UNREGISTERED
    assert controller.current_status().kind == StatusKind.ERROR


def test_login_rejected_by_provider():
    """Test a rejected register request leaves a retryable state."""
    provider = RecordingProvider(reject={"register": "network down"})
    controller = SessionController(ProviderHandle.of(provider))

    ack = run(controller.login(ALICE))

    assert not ack.accepted
    assert ack.message == "network down"
    assert controller.registration_state == RegistrationState.REGISTRATION_FAILED
    assert controller.call_state == CallState.IDLE
    assert "network down" in controller.current_status().message

    provider.reject.clear()
    assert run(controller.login(ALICE)).accepted
    assert controller.registration_state == RegistrationState.REGISTERING


def test_login_retry_after_registration_failure(controller, provider):
    """Test login is allowed again after a registration failure."""
    run(controller.login(ALICE))
    controller.apply(Transition(
        registration=RegistrationState.REGISTRATION_FAILED,
        status=SessionStatus.error("Registration failed: 403"),
    ))

    run(controller.login(ALICE))

    assert provider.count("register") == 2
    assert controller.registration_state == RegistrationState.REGISTERING


def test_place_call_requires_registration(controller, provider):
    """Test calling while unregistered is rejected."""
    with pytest.raises(NotRegistered):
        run(controller.place_call(CallTarget(callee_address="1000")))

    assert provider.count("call") == 0
    assert controller.call_state == CallState.IDLE
    assert controller.current_status().message == "Please register first"


def test_place_call_requires_address(controller, provider):
    """Test empty callee address is rejected."""
    register(controller)

    with pytest.raises(InvalidTarget):
        run(controller.place_call(CallTarget(callee_address=" ")))

    assert provider.count("call") == 0
    assert controller.call_state == CallState.IDLE


def test_place_call_dials(controller, provider):
    """Test a valid call moves to dialing."""
    register(controller)

    ack = run(controller.place_call(CallTarget(callee_address="1000")))

    assert ack.accepted
    assert provider.calls[-1] == ("call", ("1000",))
    assert controller.call_state == CallState.DIALING
    assert controller.current_status().message == "Calling 1000..."


def test_place_call_adds_one_status(controller):
    """Test entering dialing records exactly one status."""
    register(controller)
    before = len(controller.status_history())

    run(controller.place_call(CallTarget(callee_address="1000")))

    assert [s.message for s in controller.status_history()[before:]] == ["Calling 1000..."]


def test_second_call_is_rejected(controller, provider):
    """Test only one call can be active."""
    register(controller)
    run(controller.place_call(CallTarget(callee_address="1000")))

    with pytest.raises(CallAlreadyActive):
        run(controller.place_call(CallTarget(callee_address="1001")))

    assert provider.count("call") == 1
    assert controller.call_state == CallState.DIALING


def test_call_already_active_is_out_of_sequence():
    """Test the active call guard shares the out-of-sequence family."""
    assert issubclass(CallAlreadyActive, NotRegistered)


def test_place_call_rejected_by_provider():
    """Test a rejected call request returns to idle."""
    provider = RecordingProvider(reject={"call": "Not registered yet"})
    controller = SessionController(ProviderHandle.of(provider))
    register(controller)

    ack = run(controller.place_call(CallTarget(callee_address="1000")))

    assert not ack.accepted
    assert controller.call_state == CallState.IDLE
    assert controller.current_status().message == "Call failed: Not registered yet"


def test_hangup_ends_call(controller, provider):
    """Test hangup returns to idle."""
    register(controller)
    run(controller.place_call(CallTarget(callee_address="1000")))

    ack = run(controller.hangup())

    assert ack.accepted
    assert provider.count("hangup") == 1
    assert controller.call_state == CallState.IDLE
    assert controller.current_status().message == "Call ended"


def test_hangup_rejected_restores_call():
    """Test a failed hangup keeps the call."""
    provider = RecordingProvider(reject={"hangup": "No active call"})
    controller = SessionController(ProviderHandle.of(provider))
    register(controller)
    run(controller.place_call(CallTarget(callee_address="1000")))

    ack = run(controller.hangup())

    assert not ack.accepted
    assert controller.call_state == CallState.DIALING
    assert controller.current_status().message == "Hangup failed: No active call"


def test_hangup_when_idle_is_permissive(controller, provider):
    """Test hangup reaches the provider even without a call by default."""
    run(controller.hangup())

    assert provider.count("hangup") == 1
    assert controller.call_state == CallState.IDLE


def test_hangup_when_idle_can_be_refused(provider):
    """Test idle hangup is refused when disallowed."""
    controller = SessionController(ProviderHandle.of(provider), allow_idle_hangup=False)

    with pytest.raises(NoActiveCall):
        run(controller.hangup())

    assert provider.count("hangup") == 0
    assert controller.current_status().kind == StatusKind.ERROR


def test_hangup_without_provider():
    """Test hangup fails fast when the provider is absent."""
    controller = SessionController(ProviderHandle.absent())

    with pytest.raises(ProviderUnavailable):
        run(controller.hangup())


def test_apply_registration_failure_resets_call(controller):
    """Test a registration failure always drops the call."""
    register(controller)
    run(controller.place_call(CallTarget(callee_address="1000")))
    controller.apply(Transition(call=CallState.CONNECTED, status=SessionStatus.success("Call connected")))

    controller.apply(Transition(
        registration=RegistrationState.REGISTRATION_FAILED,
        status=SessionStatus.error("Registration failed: expired"),
    ))

    assert controller.call_state == CallState.IDLE
    assert controller.registration_state == RegistrationState.REGISTRATION_FAILED


def test_apply_refuses_call_while_unregistered(controller):
    """Test the call cannot leave idle unless registered."""
    controller.apply(Transition(call=CallState.RINGING, status=SessionStatus.info("Incoming call")))

    assert controller.call_state == CallState.IDLE


def test_apply_records_one_status(controller):
    """Test each transition adds exactly one status."""
    before = len(controller.status_history())

    controller.apply(Transition(
        registration=RegistrationState.REGISTERED,
        status=SessionStatus.success("Registered successfully"),
    ))

    assert len(controller.status_history()) == before + 1
    assert controller.status_history()[-1].message == "Registered successfully"


def test_status_history_is_bounded(provider):
    """Test the history keeps only the most recent statuses."""
    controller = SessionController(ProviderHandle.of(provider), history_size=3)
    for i in range(5):
        controller.apply(Transition(status=SessionStatus.info(f"status {i}")))

    messages = [s.message for s in controller.status_history()]
    assert messages == ["status 2", "status 3", "status 4"]


def test_start_initializes_provider(controller, provider):
    """Test start initializes and listens for calls."""
    run(controller.start())

    assert [name for name, _ in provider.calls] == ["initialize", "listen_for_incoming_calls"]


def test_start_reports_initialization_failure():
    """Test a failing initialize becomes an error status."""
    provider = RecordingProvider(reject={"initialize": "no SIP stack"})
    controller = SessionController(ProviderHandle.of(provider))

    run(controller.start())

    assert controller.current_status().kind == StatusKind.ERROR
    assert "no SIP stack" in controller.current_status().message


def test_start_without_provider():
    """Test start reports a missing provider without raising."""
    controller = SessionController(ProviderHandle.absent())

    run(controller.start())

    assert controller.current_status().message == "SIP provider not available"


def test_hangup_after_remote_end_adds_no_duplicate(provider):
    """Test a CallEnded handled during hangup is not reported twice."""
    controller = SessionController(ProviderHandle.of(provider))
    register(controller)
    run(controller.place_call(CallTarget(callee_address="1000")))

    async def remote_hangs_up_first():
        provider.calls.append(("hangup", ()))
        controller.apply(Transition(call=CallState.IDLE, status=SessionStatus.info("Call ended")))

    provider.hangup = remote_hangs_up_first
    before = len(controller.status_history())

    ack = run(controller.hangup())

    assert ack.accepted
    assert controller.call_state == CallState.IDLE
    messages = [s.message for s in controller.status_history()[before:]]
    assert messages == ["Hanging up...", "Call ended"]


def test_hangup_adds_one_status_per_transition(controller):
    """Test connected -> ending -> idle records two statuses."""
    register(controller)
    run(controller.place_call(CallTarget(callee_address="1000")))
    before = len(controller.status_history())

    run(controller.hangup())

    messages = [s.message for s in controller.status_history()[before:]]
    assert messages == ["Hanging up...", "Call ended"]
