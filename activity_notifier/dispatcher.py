import asyncio
import logging
from typing import Dict, List, Optional, Union

import httpx

from .schemas import DispatchResult, TokenFailure

logger = logging.getLogger(__name__)


def _error_reason(response: httpx.Response) -> str:
    """Best-effort extraction of the gateway's error message"""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("status") or error.get("message") or response.text
    if isinstance(error, str):
        return error
    return response.text or f"HTTP {response.status_code}"


class FcmV1Transport:
    """FCM HTTP v1: one authenticated request per device token."""

    def __init__(self, http_client: httpx.AsyncClient, project_id: str,
                 base_url: str = "https://fcm.googleapis.com", timeout: float = 10.0):
        self.http_client = http_client
        self.endpoint = f"{base_url.rstrip('/')}/v1/projects/{project_id}/messages:send"
        self.timeout = timeout

    async def _send_one(self, token: str, notification: Dict[str, str],
                        data: Dict[str, str], access_token: str) -> httpx.Response:
        return await self.http_client.post(
            self.endpoint,
            json={"message": {"token": token, "notification": notification, "data": data}},
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=self.timeout,
        )

    async def send(self, tokens: List[str], title: str, body: str,
                   data: Dict[str, str], access_token: Optional[str]) -> DispatchResult:
        notification = {"title": title, "body": body}
        outcomes: List[Union[httpx.Response, BaseException]] = await asyncio.gather(
            *(self._send_one(token, notification, data, access_token) for token in tokens),
            return_exceptions=True,
        )

        result = DispatchResult()
        for token, outcome in zip(tokens, outcomes):
            if isinstance(outcome, BaseException):
                result.failed += 1
                reason = f"{type(outcome).__name__}: {outcome}"
                logger.error(f"Exception sending to a token: {reason}")
                result.failures.append(TokenFailure(token=token, reason=reason))
            elif outcome.is_success:
                result.delivered += 1
            else:
                result.failed += 1
                reason = _error_reason(outcome)
                logger.error(f"FCM error for a token ({outcome.status_code}): {outcome.text}")
                result.failures.append(TokenFailure(token=token, reason=reason))
        return result


class LegacyMulticastTransport:
    """
    DEPRECATED: FCM legacy HTTP API, server-key authentication and one
    multicast request for all tokens. Kept for deployments that have not
    moved to a service account yet.
    """

    def __init__(self, http_client: httpx.AsyncClient, server_key: str,
                 base_url: str = "https://fcm.googleapis.com", timeout: float = 10.0):
        self.http_client = http_client
        self.server_key = server_key
        self.endpoint = f"{base_url.rstrip('/')}/fcm/send"
        self.timeout = timeout

    async def send(self, tokens: List[str], title: str, body: str,
                   data: Dict[str, str], access_token: Optional[str] = None) -> DispatchResult:
        result = DispatchResult()
        try:
            response = await self.http_client.post(
                self.endpoint,
                json={
                    "registration_ids": tokens,
                    "notification": {"title": title, "body": body},
                    "data": data,
                    "priority": "high",
                    "android": {"priority": "high"},
                },
                headers={"Authorization": f"key={self.server_key}"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            reason = f"{type(e).__name__}: {e}"
            logger.error(f"Legacy FCM request failed: {reason}")
            result.failed = len(tokens)
            result.failures = [TokenFailure(token=t, reason=reason) for t in tokens]
            return result

        if not response.is_success:
            reason = _error_reason(response)
            logger.error(f"Legacy FCM error ({response.status_code}): {response.text}")
            result.failed = len(tokens)
            result.failures = [TokenFailure(token=t, reason=reason) for t in tokens]
            return result

        try:
            results = response.json().get("results")
        except (ValueError, AttributeError):
            results = None
        if not isinstance(results, list) or len(results) != len(tokens):
            # No per-token breakdown; the request itself was accepted
            result.delivered = len(tokens)
            return result

        for token, outcome in zip(tokens, results):
            error = outcome.get("error") if isinstance(outcome, dict) else None
            if error:
                result.failed += 1
                result.failures.append(TokenFailure(token=token, reason=str(error)))
            else:
                result.delivered += 1
        if result.failed:
            logger.error(f"Legacy FCM rejected {result.failed} of {len(tokens)} tokens")
        return result


class PushDispatcher:
    """Sends one notification to a list of device tokens and tallies the outcome."""

    def __init__(self, transport: Union[FcmV1Transport, LegacyMulticastTransport]):
        self.transport = transport

    @property
    def requires_access_token(self) -> bool:
        return isinstance(self.transport, FcmV1Transport)

    async def dispatch(self,
                       tokens: List[str],
                       title: str,
                       body: str,
                       data: Dict[str, str],
                       access_token: Optional[str] = None) -> DispatchResult:
        """
        Send to every token, without retries.

        Args:
            tokens: Device registration tokens
            title: Notification title
            body: Notification body
            data: Flat string-valued data payload
            access_token: Bearer token for the v1 transport

        Returns:
            DispatchResult with delivered/failed counts and per-token failures
        """
        if not tokens:
            return DispatchResult()

        logger.info(f"Sending FCM to {len(tokens)} tokens")
        result = await self.transport.send(tokens, title, body, data, access_token)
        logger.info(f"Dispatch finished. OK: {result.delivered} Errors: {result.failed}")
        return result
