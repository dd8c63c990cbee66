"""Notification node: site messages and email through registered tools."""

import json
import logging
from typing import Any

from flowcore.errors import WorkflowError
from flowcore.graph.definition import NodeType
from flowcore.graph.variables import decode_json
from flowcore.nodes.base import NodeHandler, StepContext, StepOutput, register_handler
from flowcore.tools.registry import SEND_EMAIL_NOTIFICATION, SEND_SITE_NOTIFICATION

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "System notification"


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        value = json.dumps(value, ensure_ascii=False, default=str)
    return str(value).replace("|", "\\|").replace("\n", " ")


def _inline(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return "" if value is None else str(value)


def render_to_markdown(content: Any) -> str:
    """
    Render structured content as readable text.

    Lists of objects become a table, other lists become bullets, objects
    become ``- **key**: value`` lines and JSON text is decoded first.
    """
    content = decode_json(content)
    if content is None:
        return ""
    if isinstance(content, str):
        return content

    if isinstance(content, list):
        if content and all(isinstance(row, dict) for row in content):
            columns: list[str] = []
            for row in content:
                columns.extend(k for k in row if k not in columns)
            lines = [
                "| " + " | ".join(columns) + " |",
                "| " + " | ".join("---" for _ in columns) + " |",
            ]
            for row in content:
                lines.append("| " + " | ".join(_cell(row.get(c)) for c in columns) + " |")
            return "\n".join(lines)
        return "\n".join(f"- {_inline(item)}" for item in content)

    if isinstance(content, dict):
        return "\n".join(f"- **{key}**: {_inline(value)}" for key, value in content.items())

    return _inline(content)


def _delivered(result: Any) -> bool:
    return not (isinstance(result, dict) and result.get("success") is False)


@register_handler(NodeType.NOTIFICATION)
class NotificationHandler(NodeHandler):
    async def execute(self, step: StepContext) -> StepOutput:
        data = step.data
        company_id = data.get("companyId") or step.context.company_id
        if not company_id:
            logger.warning(f"Notification '{step.node_id}': missing companyId, nothing sent")
            return StepOutput(
                output={"siteSent": False, "emailSent": False, "error": "Missing companyId"}
            )

        channel = data.get("notificationType") or "site"
        subject = step.interpolate(data.get("subject") or DEFAULT_SUBJECT)
        if data.get("content") not in (None, ""):
            raw_content = step.resolve(data["content"])
        else:
            raw_content = step.previous_output()
        content = render_to_markdown(raw_content)

        registry = step.services.tools
        output: dict[str, Any] = {"siteSent": False, "emailSent": False}

        if channel in ("site", "both"):
            if not registry.has_tool(SEND_SITE_NOTIFICATION):
                raise WorkflowError(f"Tool '{SEND_SITE_NOTIFICATION}' is not registered")
            result = await step.guard(
                registry.execute(
                    SEND_SITE_NOTIFICATION,
                    {"companyId": company_id, "title": subject, "content": content, "type": "info"},
                )
            )
            output["site"] = result
            output["siteSent"] = _delivered(result)

        if channel in ("email", "both"):
            if not registry.has_tool(SEND_EMAIL_NOTIFICATION):
                raise WorkflowError(f"Tool '{SEND_EMAIL_NOTIFICATION}' is not registered")
            result = await step.guard(
                registry.execute(
                    SEND_EMAIL_NOTIFICATION,
                    {"companyId": company_id, "subject": subject, "content": content},
                )
            )
            output["email"] = result
            output["emailSent"] = _delivered(result)

        logger.info(
            f"📣 Notification '{step.node_id}' via {channel}: "
            f"site={output['siteSent']} email={output['emailSent']}"
        )
        return StepOutput(output=output)
