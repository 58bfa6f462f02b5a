"""HTTP API for drip."""

from .app import create_app
from .captcha import CaptchaVerifier
from .middleware import RateLimitGate

__all__ = ["CaptchaVerifier", "RateLimitGate", "create_app"]
