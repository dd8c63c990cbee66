"""HTTP request node."""

import json
import logging
from typing import Any

import httpx

from flowcore.config import EngineConfig
from flowcore.errors import HttpStatusError, WorkflowError
from flowcore.graph.definition import NodeType
from flowcore.nodes.base import NodeHandler, StepContext, StepOutput, register_handler

logger = logging.getLogger(__name__)

MAX_ERROR_BODY = 500


def _headers(step: StepContext, raw: Any) -> dict[str, str]:
    if not raw:
        return {}
    if isinstance(raw, str):
        text = step.interpolate(raw)
        try:
            raw = json.loads(text)
        except ValueError:
            logger.warning(f"HTTP node '{step.node_id}': headers are not valid JSON, ignoring")
            return {}
    if not isinstance(raw, dict):
        return {}
    return {str(k): str(v) for k, v in step.resolve(raw).items()}


@register_handler(NodeType.HTTP_REQUEST)
class HttpRequestHandler(NodeHandler):
    """
    Node data (legacy ``http*`` names accepted):
        url / httpUrl, method / httpMethod, headers / httpHeaders, body / httpBody

    Bodies are sent for every method except GET. Dict or list bodies are
    JSON-encoded; strings are sent as given after interpolation.
    """

    def default_timeout_ms(self, config: EngineConfig) -> int | None:
        return config.http_timeout_ms

    async def execute(self, step: StepContext) -> StepOutput:
        data = step.data
        url = step.interpolate(data.get("url") or data.get("httpUrl"))
        if not url:
            raise WorkflowError(f"HTTP node '{step.node_id}' has no URL")
        method = (data.get("method") or data.get("httpMethod") or "GET").upper()

        headers = {"Content-Type": "application/json"}
        custom = _headers(step, data.get("headers") or data.get("httpHeaders"))
        if any(k.lower() == "content-type" for k in custom):
            headers.pop("Content-Type")
        headers.update(custom)

        request: dict[str, Any] = {"headers": headers}
        raw_body = data.get("body", data.get("httpBody"))
        if method != "GET" and raw_body not in (None, ""):
            body = step.resolve(raw_body)
            if isinstance(body, str):
                request["content"] = body.encode("utf-8")
            else:
                request["content"] = json.dumps(body, default=str).encode("utf-8")

        logger.info(f"🌐 {method} {url}", extra={"node_id": step.node_id})
        client = step.services.http_client
        if client is not None:
            response = await step.guard(client.request(method, url, **request))
        else:
            timeout = step.config.http_timeout_ms / 1000
            async with httpx.AsyncClient(timeout=timeout) as owned:
                response = await step.guard(owned.request(method, url, **request))

        try:
            payload: Any = response.json()
        except ValueError:
            payload = response.text

        if not response.is_success:
            raise HttpStatusError(response.status_code, response.text[:MAX_ERROR_BODY])

        return StepOutput(
            output={
                "status": response.status_code,
                "data": payload,
                "headers": dict(response.headers),
            }
        )
