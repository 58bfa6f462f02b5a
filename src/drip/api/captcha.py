"""reCAPTCHA gate for faucet requests.

A v3 token is checked first against the score threshold; a v2 token is the
fallback when the v3 check does not pass. With no secrets configured the gate
admits every request.
"""

import functools
import logging
from collections.abc import Awaitable, Callable

import aiohttp
from aiohttp import web
from pydantic import SecretStr

logger = logging.getLogger(__name__)

VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"
CAPTCHA_FAILED = "Captcha verification failed! Try solving the captcha again."

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


class CaptchaVerifier:
    """Verifies reCAPTCHA tokens with Google's siteverify API.

    Parameters
    ----------
    secret : SecretStr | None
        reCAPTCHA v3 secret.
    v2_secret : SecretStr | None
        reCAPTCHA v2 secret.
    score_threshold : float
        Minimum v3 score.
    verify_url : str
        Verification endpoint.
    """

    def __init__(
        self,
        secret: SecretStr | None,
        v2_secret: SecretStr | None = None,
        score_threshold: float = 0.3,
        verify_url: str = VERIFY_URL,
    ):
        self._secret = secret
        self._v2_secret = v2_secret
        self._score_threshold = score_threshold
        self._verify_url = verify_url
        self._session: aiohttp.ClientSession | None = None

    @property
    def enabled(self) -> bool:
        """Whether any secret is configured."""
        return self._secret is not None or self._v2_secret is not None

    async def _siteverify(self, secret: SecretStr, token: str, remote_ip: str | None) -> dict:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10))
        data = {"secret": secret.get_secret_value(), "response": token}
        if remote_ip:
            data["remoteip"] = remote_ip
        async with self._session.post(self._verify_url, data=data) as resp:
            return await resp.json(content_type=None)

    async def verify(
        self,
        token: str | None,
        v2_token: str | None = None,
        remote_ip: str | None = None,
    ) -> bool:
        """Verify captcha tokens.

        Parameters
        ----------
        token : str | None
            v3 token.
        v2_token : str | None
            v2 token, tried when the v3 check fails.
        remote_ip : str | None
            Caller IP forwarded to the verification API.

        Returns
        -------
        bool
            True if the request may proceed.
        """
        if not self.enabled:
            return True

        try:
            if self._secret is not None and token:
                result = await self._siteverify(self._secret, token, remote_ip)
                if result.get("success") and result.get("score", 0) >= self._score_threshold:
                    return True
                logger.info("Captcha v3 check did not pass", extra={"score": result.get("score")})

            if self._v2_secret is not None and v2_token:
                result = await self._siteverify(self._v2_secret, v2_token, remote_ip)
                return bool(result.get("success"))
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            logger.warning("Captcha verification request failed", extra={"error": str(e)})

        return False

    def protect(self, handler: Handler) -> Handler:
        """Wrap a handler so it only runs after a passing captcha check."""

        @functools.wraps(handler)
        async def wrapped(request: web.Request) -> web.StreamResponse:
            body = request.get("body", {})
            passed = await self.verify(
                body.get("token"),
                body.get("v2Token"),
                request.get("client_ip"),
            )
            if not passed:
                return web.json_response({"message": CAPTCHA_FAILED}, status=400)
            return await handler(request)

        return wrapped

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session is not None:
            await self._session.close()
            self._session = None
