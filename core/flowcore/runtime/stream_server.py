"""
Workflow HTTP Server - test runs streamed as NDJSON, plus webhook triggers.

Uses aiohttp for a lightweight embedded server that runs within the
existing asyncio loop:

    POST /api/workflow/test/run   {definition, input, employeeId?, companyId?}
                                  -> application/x-ndjson progress stream
    <webhook path>                body becomes the run input, 202 + runId
"""

import asyncio
import hashlib
import hmac
import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from aiohttp import web

from flowcore.graph.cancellation import CancellationToken
from flowcore.graph.executor import WorkflowExecutor
from flowcore.runtime.stream import stream_workflow

logger = logging.getLogger(__name__)

TEST_RUN_PATH = "/api/workflow/test/run"

# employee id -> company id, for callers that only know the employee
CompanyResolver = Callable[[str], Awaitable[str | None]]


@dataclass
class WebhookRoute:
    """A workflow started by HTTP requests on ``path``."""

    path: str
    definition: dict[str, Any]
    methods: list[str] = field(default_factory=lambda: ["POST"])
    secret: str | None = None  # For HMAC-SHA256 signature verification
    company_id: str = ""
    employee_id: str = ""


@dataclass
class WorkflowServerConfig:
    """Configuration for the workflow HTTP server."""

    host: str = "127.0.0.1"
    port: int = 8080


class WorkflowServer:
    """
    Embedded HTTP server in front of a WorkflowExecutor.

    Lifecycle:
        server = WorkflowServer(executor, config)
        server.add_route(WebhookRoute(...))
        await server.start()
        # ... server running ...
        await server.stop()
    """

    def __init__(
        self,
        executor: WorkflowExecutor,
        config: WorkflowServerConfig | None = None,
        company_resolver: CompanyResolver | None = None,
    ):
        self._executor = executor
        self._config = config or WorkflowServerConfig()
        self._company_resolver = company_resolver
        self._routes: dict[str, WebhookRoute] = {}  # path -> route
        self._background: dict[str, tuple[asyncio.Task, CancellationToken]] = {}
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def add_route(self, route: WebhookRoute) -> None:
        """Register a webhook route."""
        if route.path == TEST_RUN_PATH:
            raise ValueError(f"{TEST_RUN_PATH} is reserved")
        self._routes[route.path] = route

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post(TEST_RUN_PATH, self._handle_test_run)
        for path, route in self._routes.items():
            for method in route.methods:
                app.router.add_route(method, path, self._handle_webhook)
        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(
            self._runner,
            self._config.host,
            self._config.port,
        )
        await self._site.start()
        logger.info(
            f"🌐 Workflow server started on {self._config.host}:{self.port} "
            f"with {len(self._routes)} webhook route(s)"
        )

    async def stop(self) -> None:
        """Cancel webhook runs still in flight and stop the server."""
        for task, token in list(self._background.values()):
            token.cancel("Server shutting down")
            if not task.done():
                await asyncio.wait({task}, timeout=5)
        self._background.clear()

        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._app = None
            self._site = None
            logger.info("Workflow server stopped")

    async def _handle_test_run(self, request: web.Request) -> web.StreamResponse:
        """Execute a definition and stream its progress as NDJSON."""
        try:
            body = await request.json()
        except (json.JSONDecodeError, ValueError):
            return web.json_response({"error": "Body must be a JSON object"}, status=400)
        if not isinstance(body, dict) or not isinstance(body.get("definition"), dict):
            return web.json_response({"error": "Missing workflow definition"}, status=400)

        employee_id = body.get("employeeId") or ""
        company_id = body.get("companyId") or ""
        if not company_id and employee_id and self._company_resolver:
            company_id = await self._company_resolver(employee_id) or ""

        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": "application/x-ndjson",
                "Cache-Control": "no-cache",
            },
        )
        await response.prepare(request)

        lines = stream_workflow(
            self._executor,
            body["definition"],
            body.get("input"),
            company_id=company_id,
            employee_id=employee_id,
        )
        try:
            async for line in lines:
                await response.write(line.encode("utf-8"))
        except ConnectionResetError:
            logger.warning("Client disconnected from test run stream")
        finally:
            await lines.aclose()

        await response.write_eof()
        return response

    async def _handle_webhook(self, request: web.Request) -> web.Response:
        """Start the route's workflow with the request body as input."""
        route = self._routes.get(request.path)
        if route is None:
            return web.json_response({"error": "Not found"}, status=404)

        try:
            body = await request.read()
        except (ConnectionResetError, asyncio.IncompleteReadError):
            return web.json_response(
                {"error": "Failed to read request body"},
                status=400,
            )

        # Verify HMAC signature if secret is configured
        if route.secret:
            if not self._verify_signature(request, body, route.secret):
                return web.json_response({"error": "Invalid signature"}, status=401)

        # Parse body as JSON (fall back to raw text for non-JSON)
        try:
            payload = json.loads(body) if body else {}
        except (json.JSONDecodeError, ValueError):
            payload = {"raw_body": body.decode("utf-8", errors="replace")}

        run_id = uuid.uuid4().hex
        token = CancellationToken()
        task = asyncio.create_task(
            self._executor.execute(
                route.definition,
                payload,
                cancellation=token,
                company_id=route.company_id,
                employee_id=route.employee_id,
                run_id=run_id,
            )
        )
        self._background[run_id] = (task, token)
        task.add_done_callback(lambda _: self._background.pop(run_id, None))
        logger.info(f"📣 Webhook {route.path} started run {run_id}")

        return web.json_response({"status": "accepted", "runId": run_id}, status=202)

    def _verify_signature(
        self,
        request: web.Request,
        body: bytes,
        secret: str,
    ) -> bool:
        """Verify HMAC-SHA256 signature from X-Hub-Signature-256 header."""
        signature_header = request.headers.get("X-Hub-Signature-256", "")
        if not signature_header.startswith("sha256="):
            return False

        expected_sig = signature_header[7:]  # strip "sha256="
        computed_sig = hmac.new(
            secret.encode("utf-8"),
            body,
            hashlib.sha256,
        ).hexdigest()

        return hmac.compare_digest(expected_sig, computed_sig)

    @property
    def is_running(self) -> bool:
        return self._site is not None

    @property
    def port(self) -> int | None:
        """Return the actual listening port (useful when configured with port=0)."""
        if self._site and self._site._server and self._site._server.sockets:
            return self._site._server.sockets[0].getsockname()[1]
        return None
