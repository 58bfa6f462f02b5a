"""HTTP surface of the faucet.

Routes:
- POST /api/sendToken: drip with eligibility pipeline (captcha protected)
- POST /api/claimToken: claim a chosen amount with the claim coupon
- POST /api/batchClaimToken: claim native coins and a token together
- GET /api/getChainConfigs, /api/faucetAddress, /api/getBalance, /api/faucetUsage
- GET /health, /ready, /metrics, /ip
- GET anything else: faucet frontend (static) or redirect
"""

from pathlib import Path
from urllib.parse import urlencode

from aiohttp import web
from pydantic import BaseModel, ValidationError

from drip.faucet.service import INVALID_PARAMETERS, FaucetService
from drip.observability.health import HealthRoutes
from drip.observability.metrics import REQUESTS

from .captcha import CaptchaVerifier
from .middleware import (
    BATCH_CLAIM_PATH,
    RateLimitGate,
    body_middleware,
    request_context_middleware,
)
from .schemas import (
    BatchClaimTokenRequest,
    ClaimTokenRequest,
    SendTokenRequest,
    validation_message,
)

SERVICE_KEY = web.AppKey("faucet_service", FaucetService)
CAPTCHA_KEY = web.AppKey("captcha", CaptchaVerifier)


def _respond(endpoint: str, status: int, body: dict) -> web.Response:
    REQUESTS.labels(endpoint=endpoint, status=str(status)).inc()
    return web.json_response(body, status=status)


def _parse(model: type[BaseModel], request: web.Request) -> BaseModel | str:
    """Validate the request body, returning the model or an error message."""
    try:
        return model.model_validate(request["body"])
    except ValidationError as e:
        return validation_message(e)


async def send_token(request: web.Request) -> web.Response:
    """POST /api/sendToken."""
    parsed = _parse(SendTokenRequest, request)
    if isinstance(parsed, str):
        return _respond("sendToken", 400, {"message": parsed})

    result = await request.app[SERVICE_KEY].handle_send_token(
        address=parsed.address,
        chain=parsed.chain,
        erc20=parsed.erc20,
        coupon=parsed.coupon_id,
        ip=request.get("client_ip"),
    )
    return _respond("sendToken", result.status, result.to_dict())


async def claim_token(request: web.Request) -> web.Response:
    """POST /api/claimToken."""
    parsed = _parse(ClaimTokenRequest, request)
    if isinstance(parsed, str):
        return _respond("claimToken", 400, {"message": parsed})

    result = await request.app[SERVICE_KEY].handle_claim_token(
        address=parsed.address,
        chain=parsed.chain,
        amount=parsed.amount,
        erc20=parsed.erc20,
        coupon=parsed.coupon,
    )
    return _respond("claimToken", result.status, result.to_dict())


async def batch_claim_token(request: web.Request) -> web.Response:
    """POST /api/batchClaimToken."""
    parsed = _parse(BatchClaimTokenRequest, request)
    if isinstance(parsed, str):
        return _respond("batchClaimToken", 400, {"message": parsed})

    result = await request.app[SERVICE_KEY].handle_batch_claim(
        address=parsed.address,
        chain=parsed.chain,
        native_amount=parsed.kite_amount,
        erc20=parsed.erc20,
        erc20_amount=parsed.erc20_amount,
        coupon=parsed.coupon,
    )
    return _respond("batchClaimToken", result.status, result.to_dict())


async def get_chain_configs(request: web.Request) -> web.Response:
    """GET /api/getChainConfigs."""
    return web.json_response(request.app[SERVICE_KEY].chain_configs())


async def faucet_address(request: web.Request) -> web.Response:
    """GET /api/faucetAddress."""
    address = request.app[SERVICE_KEY].faucet_address(request.query.get("chain"))
    if address is None:
        return web.json_response({"message": INVALID_PARAMETERS}, status=400)
    return web.json_response({"address": address})


async def get_balance(request: web.Request) -> web.Response:
    """GET /api/getBalance."""
    balance = await request.app[SERVICE_KEY].get_balance(
        request.query.get("chain"), request.query.get("erc20") or None
    )
    if balance is None:
        return web.json_response({"message": INVALID_PARAMETERS}, status=400)
    return web.json_response({"balance": str(balance)})


async def faucet_usage(request: web.Request) -> web.Response:
    """GET /api/faucetUsage."""
    usage = request.app[SERVICE_KEY].faucet_usage(request.query.get("chain"))
    if usage is None:
        return web.json_response({"message": INVALID_PARAMETERS}, status=400)
    return web.json_response({"usage": usage})


async def caller_ip(request: web.Request) -> web.Response:
    """GET /ip."""
    return web.json_response({"ip": request.get("client_ip")})


def _frontend_handler(native_client: bool, static_dir: str, redirect_url: str):
    static_root = Path(static_dir).resolve()

    async def frontend(request: web.Request) -> web.StreamResponse:
        """GET anything else."""
        if native_client:
            candidate = (static_root / request.match_info.get("tail", "")).resolve()
            if candidate.is_file() and candidate.is_relative_to(static_root):
                return web.FileResponse(candidate)
            return web.FileResponse(static_root / "index.html")

        chain = request.query.get("subnet")
        erc20 = request.query.get("erc20")
        location = redirect_url
        if chain:
            params = {"subnet": chain}
            if erc20:
                params["token"] = erc20
            location = f"{redirect_url}?{urlencode(params)}"
        raise web.HTTPFound(location)

    return frontend


def create_app(
    service: FaucetService,
    rate_limit_gate: RateLimitGate,
    captcha: CaptchaVerifier,
    health: HealthRoutes | None = None,
    native_client: bool = False,
    static_dir: str = "client",
    redirect_url: str = "https://core.app/tools/testnet-faucet",
) -> web.Application:
    """Build the faucet web application.

    Parameters
    ----------
    service : FaucetService
        Faucet service.
    rate_limit_gate : RateLimitGate
        Rate limiting applied before any handler.
    captcha : CaptchaVerifier
        Captcha gate for /api/sendToken.
    health : HealthRoutes | None
        Health/readiness/metrics handlers.
    native_client : bool
        Serve the bundled frontend instead of redirecting.
    static_dir : str
        Frontend directory.
    redirect_url : str
        External faucet frontend.
    """
    app = web.Application(
        middlewares=[
            request_context_middleware,
            body_middleware,
            rate_limit_gate.middleware,
        ]
    )
    app[SERVICE_KEY] = service
    app[CAPTCHA_KEY] = captcha

    app.router.add_post("/api/sendToken", captcha.protect(send_token))
    app.router.add_post("/api/claimToken", claim_token)
    app.router.add_post(BATCH_CLAIM_PATH, batch_claim_token)
    app.router.add_get("/api/getChainConfigs", get_chain_configs)
    app.router.add_get("/api/faucetAddress", faucet_address)
    app.router.add_get("/api/getBalance", get_balance)
    app.router.add_get("/api/faucetUsage", faucet_usage)

    (health or HealthRoutes()).register(app)
    app.router.add_get("/ip", caller_ip)

    # Must stay last: matches every remaining GET path
    app.router.add_get(
        "/{tail:.*}", _frontend_handler(native_client, static_dir, redirect_url)
    )

    async def _close_captcha(app: web.Application) -> None:
        await app[CAPTCHA_KEY].close()

    app.on_cleanup.append(_close_captcha)
    return app
