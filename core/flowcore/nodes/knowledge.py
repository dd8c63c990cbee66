"""Knowledge / data retrieval node backed by the log and knowledge tools."""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from flowcore.errors import WorkflowError
from flowcore.graph.definition import NodeType
from flowcore.graph.variables import stringify
from flowcore.nodes.base import NodeHandler, StepContext, StepOutput, register_handler
from flowcore.tools.registry import GET_EMPLOYEE_LOGS, SEARCH_KNOWLEDGE

logger = logging.getLogger(__name__)

TIME_RANGES = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
LOG_QUERY_TYPES = ("logs", "execution_results", "notifications")


def since_for(time_range: str | None) -> str | None:
    """ISO start time for a range key; None for "all" or unknown keys."""
    delta = TIME_RANGES.get(time_range or "")
    if delta is None:
        return None
    return (datetime.now(UTC) - delta).isoformat()


def _records(result: Any) -> list[Any]:
    if isinstance(result, list):
        return result
    if isinstance(result, dict):
        for key in ("results", "logs", "items", "data"):
            if isinstance(result.get(key), list):
                return result[key]
        return [result]
    return [] if result is None else [result]


@register_handler(NodeType.KNOWLEDGE_RETRIEVAL)
class KnowledgeRetrievalHandler(NodeHandler):
    """
    queryType:
        logs, execution_results, notifications  -> get_employee_logs
        knowledge_base                          -> search_knowledge
    """

    async def execute(self, step: StepContext) -> StepOutput:
        data = step.data
        query_type = data.get("queryType") or "logs"
        company_id = data.get("companyId") or step.context.company_id
        if not company_id:
            logger.warning(f"Retrieval '{step.node_id}': missing companyId, skipping")
            return StepOutput(output={"output": [], "count": 0, "type": query_type})

        limit = int(data.get("queryLimit") or data.get("limit") or 50)
        keyword = step.interpolate(data.get("queryKeyword")) or None

        if query_type == "knowledge_base":
            tool_id = SEARCH_KNOWLEDGE
            query = keyword or stringify(step.previous_output())
            arguments: dict[str, Any] = {
                "query": query,
                "kbId": data.get("kbId"),
                "topK": int(data.get("queryLimit") or data.get("limit") or 5),
            }
        elif query_type in LOG_QUERY_TYPES:
            tool_id = GET_EMPLOYEE_LOGS
            arguments = {
                "companyId": company_id,
                "queryType": query_type,
                "limit": limit,
                "keyword": keyword,
                "includeProcessed": bool(data.get("queryIncludeProcessed", False)),
                "since": since_for(data.get("queryTimeRange") or "24h"),
            }
            employee = data.get("queryEmployeeId")
            if employee and employee != "all":
                arguments["employeeId"] = employee
        else:
            raise WorkflowError(f"Unknown retrieval queryType '{query_type}'")

        registry = step.services.tools
        if not registry.has_tool(tool_id):
            raise WorkflowError(f"Tool '{tool_id}' is not registered")

        records = _records(await step.guard(registry.execute(tool_id, arguments)))
        logger.info(
            f"🔎 Retrieval '{step.node_id}' [{query_type}] returned {len(records)} item(s)"
        )
        return StepOutput(output={"output": records, "count": len(records), "type": query_type})
