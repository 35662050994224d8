"""Function calling tool definitions and dispatcher for the chat assistant.

Defines the function declarations that Gemini can invoke mid-conversation:
- generateTitlesAndHooks: Generate titles and hooks for a topic and audience
- generateThumbnailPrompts: Generate thumbnail image prompts and design cues

The ToolDispatcher resolves a batch of tool calls concurrently by name and
normalizes every outcome into a ToolResult. A failing or unknown tool never
aborts the batch; its error goes back to the model as data.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from google.genai.types import FunctionDeclaration, Tool

from aiforge.services.generation.content import ContentGenerator
from aiforge.services.generation.models import ToolCall, ToolResult

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Function declarations: schemas Gemini uses to decide when/how to call tools
# ---------------------------------------------------------------------------

TITLES_AND_HOOKS_DECLARATION = FunctionDeclaration(
    name="generateTitlesAndHooks",
    description=(
        "Generates 10 compelling titles and hooks for a piece of content, "
        "given a topic and a target audience."
    ),
    parameters={
        "type": "object",
        "properties": {
            "topic": {
                "type": "string",
                "description": "The main topic of the content.",
            },
            "audience": {
                "type": "string",
                "description": "The intended audience for the content.",
            },
        },
        "required": ["topic", "audience"],
    },
)

THUMBNAIL_PROMPTS_DECLARATION = FunctionDeclaration(
    name="generateThumbnailPrompts",
    description=(
        "Generates creative prompts for an AI image generator to create a YouTube thumbnail, "
        "given a video topic and a desired tone."
    ),
    parameters={
        "type": "object",
        "properties": {
            "videoTopic": {
                "type": "string",
                "description": "The topic of the YouTube video.",
            },
            "tone": {
                "type": "string",
                "description": "The desired tone of the thumbnail (e.g., professional, dramatic, fun).",
            },
        },
        "required": ["videoTopic", "tone"],
    },
)


# All available tool declarations, keyed by name for lookup
TOOL_DECLARATIONS: dict[str, FunctionDeclaration] = {
    "generateTitlesAndHooks": TITLES_AND_HOOKS_DECLARATION,
    "generateThumbnailPrompts": THUMBNAIL_PROMPTS_DECLARATION,
}

# Default tools for the chat assistant (all enabled)
DEFAULT_TOOLS = list(TOOL_DECLARATIONS.keys())


def build_tools(tool_names: list[str] | None = None) -> list[Tool]:
    """Build a list of google.genai Tool objects from tool names.

    Args:
        tool_names: Names of tools to include. If None, includes all.

    Raises:
        ValueError: If an unknown tool name is provided.
    """
    if tool_names is None:
        tool_names = DEFAULT_TOOLS

    declarations = []
    for name in tool_names:
        if name not in TOOL_DECLARATIONS:
            raise ValueError(f"Unknown tool '{name}'. Available tools: {', '.join(TOOL_DECLARATIONS.keys())}")
        declarations.append(TOOL_DECLARATIONS[name])

    if not declarations:
        return []

    return [Tool(function_declarations=declarations)]


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

ToolHandler = Callable[..., Any]


class ToolDispatcher:
    """Name-dispatches tool calls to registered handlers.

    Handlers receive the call arguments as keyword arguments and may be
    plain functions or coroutines. Whatever they return becomes the
    ``result`` of the ToolResult.

    Usage::

        dispatcher = ToolDispatcher()
        dispatcher.register("lookup", lookup_handler, declaration=LOOKUP_DECLARATION)
        results = await dispatcher.dispatch([ToolCall(name="lookup", args={"query": "x"})])
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ToolHandler] = {}
        self._declarations: dict[str, FunctionDeclaration] = {}

    @property
    def names(self) -> list[str]:
        return list(self._handlers.keys())

    def register(
        self,
        name: str,
        handler: ToolHandler,
        declaration: FunctionDeclaration | None = None,
    ) -> None:
        if name in self._handlers:
            raise ValueError(f"Tool '{name}' is already registered")
        self._handlers[name] = handler
        if declaration is not None:
            self._declarations[name] = declaration

    def tools(self) -> list[Tool]:
        """SDK Tool objects for every registered declaration."""
        if not self._declarations:
            return []
        return [Tool(function_declarations=list(self._declarations.values()))]

    async def dispatch(self, calls: list[ToolCall]) -> list[ToolResult]:
        """Resolve every call concurrently; never raises for a tool fault."""
        if not calls:
            return []
        return list(await asyncio.gather(*(self.execute(call) for call in calls)))

    async def execute(self, call: ToolCall) -> ToolResult:
        """Execute one tool call and normalize its outcome."""
        logger.info("Executing tool: %s(call_id=%s, args=%s)", call.name, call.call_id, call.args)

        handler = self._handlers.get(call.name)
        if handler is None:
            logger.warning("Unknown tool called: %s", call.name)
            return ToolResult(name=call.name, call_id=call.call_id, error=f"Unknown tool called: {call.name}")

        try:
            outcome = handler(**call.args)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as exc:
            logger.error("Tool execution failed: %s: %s", call.name, exc, exc_info=True)
            return ToolResult(name=call.name, call_id=call.call_id, error=str(exc) or type(exc).__name__)

        result = ToolResult(name=call.name, call_id=call.call_id, result=_jsonable(outcome))
        logger.info("Tool result: %s(call_id=%s) -> ok", call.name, call.call_id)
        return result


def _jsonable(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return value


def build_default_dispatcher(generator: ContentGenerator) -> ToolDispatcher:
    """Dispatcher wired to the assistant's content tools."""

    async def titles_and_hooks(topic: str, audience: str) -> list[str]:
        return await generator.generate_titles_and_hooks(topic, audience)

    async def thumbnail_prompts(videoTopic: str, tone: str):  # noqa: N803
        return await generator.generate_thumbnail_prompts(videoTopic, tone)

    dispatcher = ToolDispatcher()
    dispatcher.register("generateTitlesAndHooks", titles_and_hooks, TITLES_AND_HOOKS_DECLARATION)
    dispatcher.register("generateThumbnailPrompts", thumbnail_prompts, THUMBNAIL_PROMPTS_DECLARATION)
    return dispatcher
