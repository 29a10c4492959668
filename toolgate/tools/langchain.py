"""LangChain adapter exposing the registered tools to an agent runtime."""

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from cuid2 import cuid_wrapper
from langchain_core.tools import StructuredTool

from toolgate.models.messages import PromptContext, ToolCallPart
from toolgate.tools.base import ToolDefinition

if TYPE_CHECKING:
    from toolgate.services.pipeline import ToolExecutionPipeline

cuid = cuid_wrapper()


def _create_tool_coroutine(
    pipeline: "ToolExecutionPipeline",
    tool: ToolDefinition,
    prompt_context: PromptContext | None,
) -> Callable[..., Awaitable[str]]:
    async def tool_coroutine(**kwargs: Any) -> str:
        call = ToolCallPart(tool_call_id=cuid(), tool_name=tool.id, input=kwargs)
        result = await pipeline.execute(call, prompt_context)
        return result.output.as_text()

    return tool_coroutine


def to_structured_tools(
    pipeline: "ToolExecutionPipeline",
    prompt_context: PromptContext | None = None,
) -> list[StructuredTool]:
    """Wrap every tool registered in the pipeline's registry as an async StructuredTool.

    Calls go through the pipeline, so approval, streaming updates and
    conversation bookkeeping apply exactly as for calls issued by the model.
    """
    tools = []
    for tool_id in pipeline.registry.get_tool_ids():
        tool = pipeline.registry.get_tool(tool_id)
        tools.append(
            StructuredTool.from_function(
                coroutine=_create_tool_coroutine(pipeline, tool, prompt_context),
                name=tool.id,
                description=tool.description,
                args_schema=tool.input_schema_class,
            )
        )
    return tools
