import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx
from firebase_admin import credentials
from google.auth import exceptions as google_auth_exceptions
from google.auth import jwt
from pydantic import BaseModel

from .exceptions import TokenAcquisitionError

logger = logging.getLogger(__name__)

MESSAGING_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME_SECONDS = 3600
REFRESH_MARGIN_SECONDS = 60


class AccessToken(BaseModel):
    token: str
    expires_at: float

    def is_valid(self, now: float, margin: float = 0) -> bool:
        return now + margin < self.expires_at


class TokenProvider:
    """
    Exchanges a Firebase service account for a short-lived OAuth2 bearer token
    usable against the FCM HTTP v1 API.

    The token is kept on the instance and reused until it gets within
    REFRESH_MARGIN_SECONDS of its expiry.
    """

    def __init__(self,
                 service_account_info: Dict[str, Any],
                 http_client: httpx.AsyncClient,
                 token_url: str = "https://oauth2.googleapis.com/token",
                 timeout: float = 10.0,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            service_account_info: Parsed service account JSON
            http_client: Shared async HTTP client
            token_url: Identity provider token endpoint (also the assertion audience)
            timeout: Timeout in seconds for the token exchange
            clock: Returns the current time as epoch seconds

        Raises:
            TokenAcquisitionError: If the service account is malformed
        """
        try:
            self.credential = credentials.Certificate(service_account_info)
        except (ValueError, KeyError, TypeError) as e:
            raise TokenAcquisitionError("Invalid service account credential", str(e)) from e

        self.http_client = http_client
        self.token_url = token_url
        self.timeout = timeout
        self.clock = clock
        self._cached: Optional[AccessToken] = None

    @property
    def project_id(self) -> Optional[str]:
        return self.credential.project_id

    def build_assertion(self, now: int) -> str:
        """Sign the JWT assertion presented to the token endpoint"""
        email = self.credential.service_account_email
        payload = {
            "iss": email,
            "sub": email,
            "aud": self.token_url,
            "iat": now,
            "exp": now + ASSERTION_LIFETIME_SECONDS,
            "scope": MESSAGING_SCOPE,
        }
        try:
            return jwt.encode(self.credential.signer, payload).decode("utf-8")
        except (ValueError, google_auth_exceptions.GoogleAuthError) as e:
            raise TokenAcquisitionError("Could not sign the token assertion", str(e)) from e

    async def obtain_access_token(self) -> AccessToken:
        """
        Return a valid access token, exchanging a fresh assertion if needed.

        Raises:
            TokenAcquisitionError: If signing or the exchange fails
        """
        now = self.clock()
        if self._cached and self._cached.is_valid(now, REFRESH_MARGIN_SECONDS):
            return self._cached

        assertion = self.build_assertion(int(now))

        try:
            response = await self.http_client.post(
                self.token_url,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"Token exchange request failed: {str(e)}")
            raise TokenAcquisitionError("Token exchange request failed", str(e)) from e

        if not response.is_success:
            logger.error(f"Error obtaining FCM access token ({response.status_code}): {response.text}")
            raise TokenAcquisitionError("Could not obtain FCM access token", response.text)

        try:
            body = response.json()
        except ValueError:
            body = {}
        access_token = body.get("access_token") if isinstance(body, dict) else None
        if not access_token:
            raise TokenAcquisitionError("Token response has no access_token", response.text)

        expires_in = body.get("expires_in") or ASSERTION_LIFETIME_SECONDS
        self._cached = AccessToken(token=access_token, expires_at=now + float(expires_in))
        logger.info("Obtained FCM access token")
        return self._cached
