"""Instagram OAuth callback orchestration.

The flow for one callback request:

  1. Reject provider-side errors (``?error=...``).
  2. Require both ``code`` and ``state``.
  3. Verify the CSRF state value.
  4. Exchange the code for a short-lived token, then a long-lived one.
  5. Resolve the first-party session to a user.
  6. Upsert the long-lived credential for that user.
  7. Subscribe the credential to webhooks (best effort).

Each stage returns either its value or a ``Failure``; the first ``Failure``
ends the flow.  Step 7 can never produce a ``Failure``: its errors are logged,
counted, and attached to the ``Success``.  Anything unanticipated is mapped to
``Failure(unknown)`` at the outer boundary so the caller always gets an
``Outcome``.

Persistence happens strictly after both exchange hops, so an aborted request
never leaves a half-linked account behind.
"""

from __future__ import annotations

import logging
from typing import Protocol

from opentelemetry import trace

from iglink.core.metrics import record_callback_outcome, record_webhook_failure
from iglink.errors import CredentialStoreError, WebhookSubscriptionError
from iglink.models import (
    AuthorizationRequest,
    InstagramCredential,
    TokenGrant,
    UserSession,
)
from iglink.outcomes import Failure, FailureReason, Outcome, Success

logger = logging.getLogger(__name__)

_tracer = trace.get_tracer("iglink")


class StateVerifier(Protocol):
    def verify(self, state: str) -> bool: ...


class Exchanger(Protocol):
    async def exchange(self, code: str) -> TokenGrant | Failure: ...


class Resolver(Protocol):
    async def resolve(self, session_credential: str | None) -> UserSession | Failure: ...


class CredentialWriter(Protocol):
    async def upsert(self, credential: InstagramCredential) -> None: ...


class Subscriber(Protocol):
    async def subscribe(self, access_token: str, verify_token: str) -> None: ...


class CallbackOrchestrator:
    """Sequence the linking stages and map every failure to an ``Outcome``.

    Holds no per-request state; one instance serves all requests.
    """

    def __init__(
        self,
        *,
        state_verifier: StateVerifier,
        exchanger: Exchanger,
        sessions: Resolver,
        store: CredentialWriter,
        webhooks: Subscriber,
        webhook_verify_token: str,
    ) -> None:
        self._state_verifier = state_verifier
        self._exchanger = exchanger
        self._sessions = sessions
        self._store = store
        self._webhooks = webhooks
        self._webhook_verify_token = webhook_verify_token

    async def handle(
        self,
        request: AuthorizationRequest,
        session_credential: str | None,
    ) -> Outcome:
        """Run the callback flow and return exactly one terminal outcome."""
        with _tracer.start_as_current_span("iglink.callback") as span:
            try:
                outcome = await self._run(request, session_credential)
            except Exception:
                logger.exception("Unexpected error in Instagram callback")
                outcome = Failure(FailureReason.unknown)

            label = "success" if isinstance(outcome, Success) else str(outcome.reason)
            span.set_attribute("iglink.outcome", label)
            record_callback_outcome(label)
            match outcome:
                case Success(user_id=user_id):
                    logger.info("Instagram account linked (user_id=%s)", user_id)
                case Failure(reason=reason):
                    logger.warning("Instagram callback failed: %s", reason)
            return outcome

    async def _run(
        self,
        request: AuthorizationRequest,
        session_credential: str | None,
    ) -> Outcome:
        if request.error:
            logger.warning("Instagram OAuth provider error: %s", request.error)
            return Failure(FailureReason.provider_denied, detail=request.error)

        if not request.code or not request.state:
            return Failure(FailureReason.invalid_request)

        if not self._state_verifier.verify(request.state):
            logger.warning(
                "OAuth callback received invalid or expired state token (state=%s...)",
                request.state[:8],
            )
            return Failure(FailureReason.invalid_state)

        grant = await self._exchanger.exchange(request.code)
        if isinstance(grant, Failure):
            return grant

        session = await self._sessions.resolve(session_credential)
        if isinstance(session, Failure):
            return session

        credential = InstagramCredential(
            user_id=session.user_id,
            instagram_user_id=grant.provider_user_id,
            access_token=grant.long_lived.access_token,
            token_expires_at=grant.long_lived.expires_at,
        )
        if (failure := await self._persist(credential)) is not None:
            return failure

        webhook_error = await self._subscribe(credential.access_token)
        return Success(
            user_id=credential.user_id,
            instagram_user_id=credential.instagram_user_id,
            webhook_error=webhook_error,
        )

    async def _persist(self, credential: InstagramCredential) -> Failure | None:
        try:
            await self._store.upsert(credential)
        except (CredentialStoreError, ValueError) as exc:
            logger.error("Database error while storing Instagram credential: %s", exc)
            return Failure(FailureReason.persistence_failed, detail=str(exc))
        return None

    async def _subscribe(self, access_token: str) -> str | None:
        """Best-effort webhook subscription; returns the error text, never raises."""
        try:
            await self._webhooks.subscribe(access_token, self._webhook_verify_token)
        except WebhookSubscriptionError as exc:
            logger.error("Webhook subscription failed: %s", exc)
            record_webhook_failure()
            return str(exc)
        except Exception as exc:
            logger.error("Webhook subscription error: %s", type(exc).__name__, exc_info=True)
            record_webhook_failure()
            return type(exc).__name__
        return None
