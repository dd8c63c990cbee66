"""Output and text templating nodes."""

from flowcore.graph.definition import NodeType
from flowcore.nodes.base import NodeHandler, StepContext, StepOutput, register_handler


def _first(data: dict, keys: tuple[str, ...]) -> str | None:
    for key in keys:
        if data.get(key):
            return data[key]
    return None


class TemplateHandler(NodeHandler):
    """Interpolate the first configured template field, else pass the previous output."""

    template_keys: tuple[str, ...] = ()

    async def execute(self, step: StepContext) -> StepOutput:
        template = _first(step.data, self.template_keys)
        if template is None:
            return StepOutput(output=step.previous_output())
        return StepOutput(output=step.interpolate(template))


@register_handler(NodeType.OUTPUT)
class OutputHandler(TemplateHandler):
    template_keys = ("templateContent", "template")


@register_handler(NodeType.TEMPLATE_TRANSFORM, NodeType.TEXT_TEMPLATE)
class TextTemplateHandler(TemplateHandler):
    template_keys = ("templateContent", "template")


@register_handler(NodeType.MESSAGE)
class MessageHandler(TemplateHandler):
    template_keys = ("messageContent", "message", "content")
