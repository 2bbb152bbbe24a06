"""HTTP server for capture ingest, review and publishing.

Endpoints:
    GET  /health                          - {"status": "ok"}
    GET  /metrics                         - counters and uptime
    POST /api/capture/ingest              - new capture from a client (API key)
    GET  /api/capture/list                - captures by status (admin)
    POST /api/capture/{id}/approve        - pending -> approved (admin)
    POST /api/capture/{id}/reject         - pending -> rejected (admin)
    POST /api/capture/{id}/restore        - rejected -> pending (admin)
    POST /api/capture/{id}/refine         - run AI refinement (admin)
    PATCH|POST /api/capture/{id}/update   - edit metadata (admin)
    GET  /api/capture/{id}/preview        - what publishing would write (admin)
    GET|POST /api/capture/publish-all     - publish the approved queue (admin or cron)
    POST /api/subscribe                   - newsletter sign-up

Errors are answered as ``{"error": message}`` with the status carried by the
CaptureDeskError subclass; anything unexpected becomes a generic 500.
"""

import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from aiohttp import web

from capturedesk.capture import lifecycle
from capturedesk.capture.github import create_github_client
from capturedesk.capture.ingest import ingest
from capturedesk.capture.models import (
    CaptureIngestPayload,
    CaptureStatus,
    CaptureUpdatePayload,
    validate_payload,
)
from capturedesk.capture.publish import BatchPublisher, preview_publish
from capturedesk.capture.refine import RefinementGateway
from capturedesk.capture.store import CaptureStore
from capturedesk.core.config import Config
from capturedesk.core.exceptions import (
    AuthError,
    CaptureDeskError,
    ConfigurationError,
    RefinementError,
    ValidationError,
)
from capturedesk.core.kv_store import create_kv_store
from capturedesk.core.llm_provider import create_provider
from capturedesk.newsletter.mailer import ResendClient, create_resend_client, subscribe

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100


@dataclass
class ServerMetrics:
    """Request and outcome counters for /metrics."""

    start_time: float = field(default_factory=time.time)
    requests_total: int = 0
    captures_ingested: int = 0
    captures_published: int = 0
    publish_batches: int = 0
    errors_total: int = 0

    def get_uptime_seconds(self) -> float:
        return time.time() - self.start_time

    def to_dict(self) -> dict[str, Any]:
        return {
            "uptime_seconds": round(self.get_uptime_seconds(), 2),
            "requests_total": self.requests_total,
            "captures_ingested": self.captures_ingested,
            "captures_published": self.captures_published,
            "publish_batches": self.publish_batches,
            "errors_total": self.errors_total,
        }


@dataclass
class LazyClients:
    """Outbound clients built on first use; the app holds this from startup."""

    publisher: Optional[BatchPublisher] = None
    mailer: Optional[ResendClient] = None


CONFIG_KEY = web.AppKey("config", Config)
STORE_KEY = web.AppKey("store", CaptureStore)
GATEWAY_KEY = web.AppKey("gateway", RefinementGateway)
CLIENTS_KEY = web.AppKey("clients", LazyClients)
METRICS_KEY = web.AppKey("metrics", ServerMetrics)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


def _presented_token(request: web.Request) -> str:
    """Authorization header value without a ``Bearer `` prefix."""
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[7:]
    return header


def _matches(provided: Optional[str], expected: Optional[str]) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def check_ingest_auth(request: web.Request) -> None:
    config = request.app[CONFIG_KEY]
    config.require_ingest_key()
    if not _matches(_presented_token(request), config.capture_api_key):
        raise AuthError("Unauthorized")


def _is_admin(request: web.Request) -> bool:
    expected = request.app[CONFIG_KEY].admin_password
    return _matches(_presented_token(request), expected) or _matches(
        request.query.get("password"), expected
    )


def check_admin_auth(request: web.Request) -> None:
    request.app[CONFIG_KEY].require_admin()
    if not _is_admin(request):
        raise AuthError("Unauthorized")


def check_publish_auth(request: web.Request) -> None:
    """Admin credential, or the cron secret as bearer or ``x-vercel-cron-secret``."""
    config = request.app[CONFIG_KEY]
    if not config.admin_password and not config.cron_secret:
        raise ConfigurationError("ADMIN_PASSWORD not configured")
    if config.admin_password and _is_admin(request):
        return
    if config.cron_secret and (
        _matches(request.headers.get("x-vercel-cron-secret"), config.cron_secret)
        or _matches(_presented_token(request), config.cron_secret)
    ):
        return
    raise AuthError("Unauthorized")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _read_json(request: web.Request, *, required: bool = True) -> dict[str, Any]:
    if not request.can_read_body:
        if required:
            raise ValidationError("Invalid JSON body")
        return {}
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        if required:
            raise ValidationError("Invalid JSON body")
        return {}
    if not isinstance(body, dict):
        if required:
            raise ValidationError("Request body must be a JSON object")
        return {}
    return body


def _parse_int(value: Optional[str], default: int, name: str) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


def _publisher(app: web.Application) -> BatchPublisher:
    clients = app[CLIENTS_KEY]
    if clients.publisher is None:
        config = app[CONFIG_KEY]
        config.require_github()
        clients.publisher = BatchPublisher(
            create_github_client(config),
            content_dir=config.content_dir,
            image_dir=config.image_dir,
        )
    return clients.publisher


def _mailer(app: web.Application) -> ResendClient:
    clients = app[CLIENTS_KEY]
    if clients.mailer is None:
        clients.mailer = create_resend_client(app[CONFIG_KEY])
    return clients.mailer


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Map exceptions to ``{"error": ...}`` responses."""
    request.app[METRICS_KEY].requests_total += 1
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except CaptureDeskError as e:
        if e.status >= 500:
            request.app[METRICS_KEY].errors_total += 1
            logger.error("Request failed: %s", e, extra={"path": request.path, "code": e.code})
        return web.json_response({"error": str(e)}, status=e.status)
    except ConfigurationError as e:
        request.app[METRICS_KEY].errors_total += 1
        logger.error("Configuration error: %s", e, extra={"path": request.path})
        return web.json_response({"error": str(e)}, status=500)
    except Exception:
        request.app[METRICS_KEY].errors_total += 1
        logger.exception("Unhandled error", extra={"path": request.path})
        return web.json_response({"error": "Internal server error"}, status=500)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def health_handler(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


async def metrics_handler(request: web.Request) -> web.Response:
    return web.json_response(request.app[METRICS_KEY].to_dict())


async def ingest_handler(request: web.Request) -> web.Response:
    """Create a pending capture. Answers 201 ``{id, status}``."""
    check_ingest_auth(request)
    payload = validate_payload(CaptureIngestPayload, await _read_json(request))
    capture = await ingest(request.app[STORE_KEY], payload)
    request.app[METRICS_KEY].captures_ingested += 1
    return web.json_response(
        {"id": capture.id, "status": capture.status.value}, status=201
    )


async def list_handler(request: web.Request) -> web.Response:
    check_admin_auth(request)
    try:
        status = CaptureStatus(request.query.get("status", "pending"))
    except ValueError:
        raise ValidationError("Invalid status")
    limit = min(max(_parse_int(request.query.get("limit"), 50, "limit"), 1), MAX_LIST_LIMIT)
    offset = max(_parse_int(request.query.get("offset"), 0, "offset"), 0)

    store = request.app[STORE_KEY]
    captures = await store.list(status, limit, offset)
    total = await store.count(status)
    return web.json_response(
        {
            "captures": [capture.to_json_dict() for capture in captures],
            "total": total,
            "limit": limit,
            "offset": offset,
            "hasMore": offset + len(captures) < total,
        }
    )


async def approve_handler(request: web.Request) -> web.Response:
    check_admin_auth(request)
    body = await _read_json(request, required=False)
    use_refined = body.get("useRefined") is not False
    await lifecycle.approve(request.app[STORE_KEY], request.match_info["id"], use_refined)
    return web.json_response(
        {
            "success": True,
            "status": CaptureStatus.APPROVED.value,
            "message": 'Queued for publishing. Use "Publish All" to deploy.',
        }
    )


async def reject_handler(request: web.Request) -> web.Response:
    check_admin_auth(request)
    await lifecycle.reject(request.app[STORE_KEY], request.match_info["id"])
    return web.json_response({"success": True})


async def restore_handler(request: web.Request) -> web.Response:
    check_admin_auth(request)
    capture = await lifecycle.restore(request.app[STORE_KEY], request.match_info["id"])
    return web.json_response({"success": True, "capture": capture.to_json_dict()})


async def refine_handler(request: web.Request) -> web.Response:
    check_admin_auth(request)
    gateway = request.app[GATEWAY_KEY]
    if not gateway.configured:
        raise RefinementError("AI refinement not configured")
    capture = await lifecycle.refine(
        request.app[STORE_KEY], gateway, request.match_info["id"]
    )
    return web.json_response(
        {"success": True, "refined": capture.refined.to_json_dict()}
    )


async def update_handler(request: web.Request) -> web.Response:
    check_admin_auth(request)
    updates = validate_payload(CaptureUpdatePayload, await _read_json(request))
    capture = await lifecycle.update(
        request.app[STORE_KEY], request.match_info["id"], updates
    )
    return web.json_response({"success": True, "capture": capture.to_json_dict()})


async def preview_handler(request: web.Request) -> web.Response:
    """Rendered output of a capture. ``?raw=true`` answers the document itself."""
    check_admin_auth(request)
    capture = await lifecycle.get_capture(request.app[STORE_KEY], request.match_info["id"])
    use_refined = request.query.get("useRefined")
    preview = preview_publish(
        capture,
        None if use_refined is None else use_refined != "false",
        content_dir=request.app[CONFIG_KEY].content_dir,
    )
    if request.query.get("raw") == "true":
        return web.Response(text=preview["content"], content_type="text/markdown")
    return web.json_response(preview)


async def publish_all_handler(request: web.Request) -> web.Response:
    check_publish_auth(request)
    publisher = _publisher(request.app)
    result = await lifecycle.publish_all(request.app[STORE_KEY], publisher)
    if result is None:
        return web.json_response(
            {"success": True, "message": "No items to publish", "published": 0}
        )

    metrics = request.app[METRICS_KEY]
    metrics.captures_published += len(result.published_ids)
    if result.commit_id:
        metrics.publish_batches += 1
    return web.json_response(
        {
            "success": True,
            "message": f"Published {len(result.published_ids)} items in one commit",
            "published": len(result.published_ids),
            "commit": result.commit_id,
            "filesChanged": result.files_changed,
            "items": [info.to_json_dict() for info in result.per_item_info],
            "skipped": [item.to_json_dict() for item in result.skipped],
        }
    )


async def subscribe_handler(request: web.Request) -> web.Response:
    """Newsletter sign-up. Failures answer ``{success: false, code, message}``."""
    try:
        body = await _read_json(request)
        await subscribe(
            _mailer(request.app),
            request.app[CONFIG_KEY],
            body.get("email"),
            body.get("frequency"),
            body.get("preference"),
        )
    except CaptureDeskError as e:
        if e.status >= 500:
            logger.error("Subscribe failed: %s", e)
            message = "Failed to subscribe. Please try again."
        else:
            message = str(e)
        return web.json_response(
            {"success": False, "code": e.code, "message": message}, status=e.status
        )
    except ConfigurationError as e:
        logger.error("Subscribe not configured: %s", e)
        return web.json_response(
            {
                "success": False,
                "code": "not_configured",
                "message": "Newsletter not configured",
            },
            status=500,
        )
    return web.json_response(
        {"success": True, "message": "You're in! Check your inbox for a welcome note."}
    )


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------


async def _close_clients(app: web.Application) -> None:
    await app[STORE_KEY].close()
    clients = app[CLIENTS_KEY]
    if clients.publisher is not None:
        await clients.publisher.close()
    if clients.mailer is not None:
        await clients.mailer.close()


def create_app(
    config: Config,
    *,
    store: Optional[CaptureStore] = None,
    gateway: Optional[RefinementGateway] = None,
    publisher: Optional[BatchPublisher] = None,
    mailer: Optional[ResendClient] = None,
) -> web.Application:
    """Create and configure the aiohttp application.

    Components not passed in are built from ``config``. The publisher and the
    mailer are created on first use, so a server without GitHub or Resend
    credentials still serves ingest and review.
    """
    app = web.Application(middlewares=[error_middleware])
    app[CONFIG_KEY] = config
    app[METRICS_KEY] = ServerMetrics()
    app[STORE_KEY] = store or CaptureStore(create_kv_store(config))
    app[GATEWAY_KEY] = gateway or RefinementGateway(create_provider(config))
    app[CLIENTS_KEY] = LazyClients(publisher=publisher, mailer=mailer)
    app.on_cleanup.append(_close_clients)

    app.router.add_get("/health", health_handler)
    app.router.add_get("/metrics", metrics_handler)
    app.router.add_post("/api/capture/ingest", ingest_handler)
    app.router.add_get("/api/capture/list", list_handler)
    app.router.add_get("/api/capture/publish-all", publish_all_handler)
    app.router.add_post("/api/capture/publish-all", publish_all_handler)
    app.router.add_post("/api/capture/{id}/approve", approve_handler)
    app.router.add_post("/api/capture/{id}/reject", reject_handler)
    app.router.add_post("/api/capture/{id}/restore", restore_handler)
    app.router.add_post("/api/capture/{id}/refine", refine_handler)
    app.router.add_patch("/api/capture/{id}/update", update_handler)
    app.router.add_post("/api/capture/{id}/update", update_handler)
    app.router.add_get("/api/capture/{id}/preview", preview_handler)
    app.router.add_post("/api/subscribe", subscribe_handler)
    return app


async def run_server(config: Config) -> web.AppRunner:
    """Start the server on ``config.host:config.port``.

    Returns:
        The AppRunner instance (for cleanup).
    """
    app = create_app(config)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, config.host, config.port)
    await site.start()
    logger.info("Server listening", extra={"host": config.host, "port": config.port})
    return runner
