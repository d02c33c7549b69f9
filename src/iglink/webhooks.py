"""Client for the Instagram webhook subscription endpoint."""

from __future__ import annotations

import logging

import httpx

from iglink.errors import WebhookSubscriptionError

logger = logging.getLogger(__name__)


class WebhookSubscriber:
    """Register a freshly linked credential with the event-delivery subsystem.

    Failures raise ``WebhookSubscriptionError``; whether that matters is the
    caller's decision.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        subscribe_url: str,
        service_key: str,
    ) -> None:
        self._http = http_client
        self._subscribe_url = subscribe_url
        self._service_key = service_key

    async def subscribe(self, access_token: str, verify_token: str) -> None:
        headers = {"Authorization": f"Bearer {self._service_key}"}
        body = {"access_token": access_token, "verify_token": verify_token}
        try:
            response = await self._http.post(self._subscribe_url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise WebhookSubscriptionError(
                f"webhook endpoint unreachable: {type(exc).__name__}"
            ) from exc

        if not response.is_success:
            raise WebhookSubscriptionError(
                f"webhook endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        logger.debug("Webhook subscription accepted (HTTP %d)", response.status_code)
