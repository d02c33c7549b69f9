"""Tests for iglink.callback.CallbackOrchestrator.

The first group drives the orchestrator with in-memory fakes to pin down the
outcome precedence and side-effect ordering.  The last group wires the real
collaborators against ``httpx.MockTransport`` and a mocked asyncpg pool.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import httpx
import pytest

from iglink.callback import CallbackOrchestrator
from iglink.errors import CredentialStoreError, WebhookSubscriptionError
from iglink.exchange import INSTAGRAM_LONG_LIVED_TOKEN_URL, INSTAGRAM_TOKEN_URL, TokenExchanger
from iglink.models import (
    AuthorizationRequest,
    InstagramCredential,
    LongLivedToken,
    TokenGrant,
    UserSession,
)
from iglink.outcomes import Failure, FailureReason, Success
from iglink.sessions import SessionResolver
from iglink.state_tokens import StateTokenVerifier
from iglink.store import InstagramAccountStore
from iglink.webhooks import WebhookSubscriber

pytestmark = pytest.mark.unit

_NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)
_GRANT = TokenGrant(
    provider_user_id="ig1",
    long_lived=LongLivedToken(
        access_token="long",
        token_type="bearer",
        expires_in_seconds=5184000,
        expires_at=_NOW + timedelta(seconds=5184000),
    ),
)
_VALID = AuthorizationRequest(code="abc", state="xyz")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeVerifier:
    def __init__(self, valid: bool = True) -> None:
        self.valid = valid
        self.calls: list[str] = []

    def verify(self, state: str) -> bool:
        self.calls.append(state)
        return self.valid


class FakeExchanger:
    def __init__(self, result: TokenGrant | Failure = _GRANT) -> None:
        self.result = result
        self.calls: list[str] = []

    async def exchange(self, code: str) -> TokenGrant | Failure:
        self.calls.append(code)
        return self.result


class FakeResolver:
    def __init__(self, users: dict[str, str] | None = None) -> None:
        self.users = {"session-U1": "U1"} if users is None else users
        self.calls: list[str | None] = []

    async def resolve(self, session_credential: str | None) -> UserSession | Failure:
        self.calls.append(session_credential)
        if not session_credential:
            return Failure(FailureReason.no_session)
        if session_credential not in self.users:
            return Failure(FailureReason.invalid_session)
        return UserSession(self.users[session_credential], session_credential)


class FakeStore:
    """Keyed by user id, like the real table."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.rows: dict[str, InstagramCredential] = {}
        self.calls: list[InstagramCredential] = []

    async def upsert(self, credential: InstagramCredential) -> None:
        self.calls.append(credential)
        if self.error is not None:
            raise self.error
        self.rows[credential.user_id] = credential


class FakeSubscriber:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def subscribe(self, access_token: str, verify_token: str) -> None:
        self.calls.append((access_token, verify_token))
        if self.error is not None:
            raise self.error


def _orchestrator(
    *,
    verifier: FakeVerifier | None = None,
    exchanger: FakeExchanger | None = None,
    resolver: FakeResolver | None = None,
    store: FakeStore | None = None,
    subscriber: FakeSubscriber | None = None,
):
    parts = {
        "verifier": verifier or FakeVerifier(),
        "exchanger": exchanger or FakeExchanger(),
        "resolver": resolver or FakeResolver(),
        "store": store or FakeStore(),
        "subscriber": subscriber or FakeSubscriber(),
    }
    orchestrator = CallbackOrchestrator(
        state_verifier=parts["verifier"],
        exchanger=parts["exchanger"],
        sessions=parts["resolver"],
        store=parts["store"],
        webhooks=parts["subscriber"],
        webhook_verify_token="verify-me",
    )
    return orchestrator, parts


# ---------------------------------------------------------------------------
# Precedence
# ---------------------------------------------------------------------------


class TestPrecedence:
    @pytest.mark.parametrize(
        "request_",
        [
            AuthorizationRequest(error="access_denied"),
            AuthorizationRequest(error="access_denied", code="abc", state="xyz"),
            AuthorizationRequest(error="server_error", state="xyz"),
        ],
    )
    async def test_provider_error_wins_regardless_of_code_and_state(self, request_):
        orchestrator, parts = _orchestrator()
        outcome = await orchestrator.handle(request_, "session-U1")

        assert isinstance(outcome, Failure)
        assert outcome.reason == FailureReason.provider_denied
        assert parts["verifier"].calls == []
        assert parts["exchanger"].calls == []

    @pytest.mark.parametrize(
        "request_",
        [
            AuthorizationRequest(),
            AuthorizationRequest(code="abc"),
            AuthorizationRequest(state="xyz"),
            AuthorizationRequest(code="", state="xyz"),
            AuthorizationRequest(code="abc", state=""),
        ],
    )
    async def test_missing_code_or_state_is_invalid_request(self, request_):
        orchestrator, parts = _orchestrator()
        outcome = await orchestrator.handle(request_, "session-U1")

        assert outcome == Failure(FailureReason.invalid_request)
        assert parts["verifier"].calls == []

    async def test_bad_state_is_invalid_state_and_stops(self):
        orchestrator, parts = _orchestrator(verifier=FakeVerifier(valid=False))
        outcome = await orchestrator.handle(_VALID, "session-U1")

        assert outcome == Failure(FailureReason.invalid_state)
        assert parts["exchanger"].calls == []
        assert parts["store"].calls == []

    async def test_exchange_failure_outranks_missing_session(self):
        orchestrator, parts = _orchestrator(
            exchanger=FakeExchanger(Failure(FailureReason.exchange_failed))
        )
        outcome = await orchestrator.handle(_VALID, None)

        assert isinstance(outcome, Failure)
        assert outcome.reason == FailureReason.exchange_failed
        assert parts["resolver"].calls == []
        assert parts["store"].calls == []

    async def test_no_session(self):
        orchestrator, parts = _orchestrator()
        outcome = await orchestrator.handle(_VALID, None)

        assert outcome == Failure(FailureReason.no_session)
        assert parts["store"].calls == []

    async def test_invalid_session(self):
        orchestrator, parts = _orchestrator()
        outcome = await orchestrator.handle(_VALID, "revoked-session")

        assert outcome == Failure(FailureReason.invalid_session)
        assert parts["store"].calls == []

    async def test_persistence_failure_skips_webhook(self):
        orchestrator, parts = _orchestrator(store=FakeStore(CredentialStoreError("db down")))
        outcome = await orchestrator.handle(_VALID, "session-U1")

        assert isinstance(outcome, Failure)
        assert outcome.reason == FailureReason.persistence_failed
        assert parts["subscriber"].calls == []

    async def test_webhook_failure_is_still_success(self):
        orchestrator, parts = _orchestrator(
            subscriber=FakeSubscriber(WebhookSubscriptionError("HTTP 500", status_code=500))
        )
        outcome = await orchestrator.handle(_VALID, "session-U1")

        assert isinstance(outcome, Success)
        assert outcome.webhook_error == "HTTP 500"
        assert "U1" in parts["store"].rows

    async def test_unexpected_webhook_exception_is_still_success(self):
        orchestrator, _ = _orchestrator(subscriber=FakeSubscriber(RuntimeError("boom")))
        outcome = await orchestrator.handle(_VALID, "session-U1")

        assert isinstance(outcome, Success)
        assert outcome.webhook_error == "RuntimeError"

    async def test_unexpected_exception_maps_to_unknown(self):
        class ExplodingExchanger:
            async def exchange(self, code):
                raise KeyError("surprise")

        orchestrator, parts = _orchestrator()
        orchestrator._exchanger = ExplodingExchanger()
        outcome = await orchestrator.handle(_VALID, "session-U1")

        assert outcome == Failure(FailureReason.unknown)
        assert parts["store"].calls == []


# ---------------------------------------------------------------------------
# Success path
# ---------------------------------------------------------------------------


class TestSuccess:
    async def test_all_steps_succeed(self):
        orchestrator, parts = _orchestrator()
        outcome = await orchestrator.handle(_VALID, "session-U1")

        assert outcome == Success(user_id="U1", instagram_user_id="ig1")
        assert parts["store"].calls == [
            InstagramCredential(
                user_id="U1",
                instagram_user_id="ig1",
                access_token="long",
                token_expires_at=_NOW + timedelta(seconds=5184000),
            )
        ]
        assert parts["subscriber"].calls == [("long", "verify-me")]

    async def test_each_side_effect_runs_once(self):
        orchestrator, parts = _orchestrator()
        await orchestrator.handle(_VALID, "session-U1")

        assert parts["exchanger"].calls == ["abc"]
        assert len(parts["store"].calls) == 1
        assert len(parts["subscriber"].calls) == 1

    async def test_replayed_flow_overwrites_credential(self):
        store = FakeStore()
        orchestrator, _ = _orchestrator(store=store)
        await orchestrator.handle(_VALID, "session-U1")
        await orchestrator.handle(_VALID, "session-U1")

        assert len(store.calls) == 2
        assert list(store.rows) == ["U1"]


# ---------------------------------------------------------------------------
# Real collaborators
# ---------------------------------------------------------------------------


class TestWiredFlow:
    @pytest.fixture
    def wired(self, router, make_pool):
        supabase_user_url = "https://project.supabase.co/auth/v1/user"
        subscribe_url = "https://app.example.com/functions/v1/instagram-webhook/subscribe"

        router.add(
            "POST",
            INSTAGRAM_TOKEN_URL,
            httpx.Response(200, json={"access_token": "short", "user_id": "ig1"}),
        )
        router.add(
            "GET",
            INSTAGRAM_LONG_LIVED_TOKEN_URL,
            httpx.Response(200, json={"access_token": "long", "expires_in": 5184000}),
        )
        router.add(
            "GET",
            supabase_user_url,
            lambda request: (
                httpx.Response(200, json={"id": "U1"})
                if request.headers.get("authorization") == "Bearer session-U1"
                else httpx.Response(401)
            ),
        )
        router.add("POST", subscribe_url, httpx.Response(200, json={"ok": True}))

        client = router.client()
        pool = make_pool()
        verifier = StateTokenVerifier("state-secret")
        orchestrator = CallbackOrchestrator(
            state_verifier=verifier,
            exchanger=TokenExchanger(
                client,
                client_id="ig-app-id",
                client_secret="ig-app-secret",
                redirect_uri="https://app.example.com/api/auth/instagram/callback",
                clock=lambda: _NOW,
            ),
            sessions=SessionResolver(
                client,
                supabase_url="https://project.supabase.co",
                service_key="service-role-key",
            ),
            store=InstagramAccountStore(pool),
            webhooks=WebhookSubscriber(
                client, subscribe_url=subscribe_url, service_key="service-role-key"
            ),
            webhook_verify_token="verify-me",
        )
        return orchestrator, verifier, pool

    async def test_reference_scenario(self, wired, router):
        orchestrator, verifier, pool = wired
        request = AuthorizationRequest(code="abc", state=verifier.issue())

        outcome = await orchestrator.handle(request, "session-U1")

        assert outcome == Success(user_id="U1", instagram_user_id="ig1")
        _, *args = pool._conn.execute.call_args.args
        assert args == ["U1", "ig1", "long", _NOW + timedelta(seconds=5184000)]
        assert len(router.calls) == 4

    async def test_forged_state_makes_no_network_calls(self, wired, router):
        orchestrator, _, pool = wired
        forged = StateTokenVerifier("attacker-secret").issue()

        outcome = await orchestrator.handle(
            AuthorizationRequest(code="abc", state=forged), "session-U1"
        )

        assert outcome == Failure(FailureReason.invalid_state)
        assert router.calls == []
        pool._conn.execute.assert_not_awaited()

    async def test_hop_two_failure_persists_nothing(self, wired, router):
        orchestrator, verifier, pool = wired
        router.add("GET", INSTAGRAM_LONG_LIVED_TOKEN_URL, httpx.Response(400))

        outcome = await orchestrator.handle(
            AuthorizationRequest(code="abc", state=verifier.issue()), "session-U1"
        )

        assert isinstance(outcome, Failure)
        assert outcome.reason == FailureReason.exchange_failed
        pool._conn.execute.assert_not_awaited()

    async def test_database_failure_is_persistence_failed(self, wired, router):
        orchestrator, verifier, pool = wired
        pool._conn.execute.side_effect = ConnectionError("db gone")

        outcome = await orchestrator.handle(
            AuthorizationRequest(code="abc", state=verifier.issue()), "session-U1"
        )

        assert isinstance(outcome, Failure)
        assert outcome.reason == FailureReason.persistence_failed
        assert all("subscribe" not in str(call.url) for call in router.calls)
