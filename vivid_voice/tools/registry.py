"""
Tool registry - lookup and schema generation for the tool catalogue.

One registry is built per application (no module-level singleton) and handed
to the dispatcher and the credential acquirer.
"""

from typing import Dict, Iterable, List, Mapping, Optional

import structlog

from vivid_voice.tools.base import ToolCategory, ToolDefinition

logger = structlog.get_logger(__name__)


class ToolRegistry:
    """
    Registry of tool definitions with per-context exposure.

    ``contexts`` maps a conversation context tag to the tool names exposed in
    that context; a context that is not listed exposes no tools.
    """

    def __init__(self, contexts: Optional[Mapping[str, Iterable[str]]] = None):
        self._tools: Dict[str, ToolDefinition] = {}
        self._contexts: Dict[str, List[str]] = {
            name: list(tools) for name, tools in (contexts or {}).items()
        }

    def register(self, definition: ToolDefinition) -> None:
        if definition.name in self._tools:
            logger.warning("Tool already registered, overwriting", tool=definition.name)
        self._tools[definition.name] = definition
        logger.debug("Registered tool", tool=definition.name, category=definition.category.value)

    def get(self, name: str, context: Optional[str] = None) -> Optional[ToolDefinition]:
        """
        Get a tool by name.

        Args:
            name: Tool name (e.g., "get_market_price")
            context: When given, only return the tool if it is exposed there

        Returns:
            ToolDefinition or None if not found / not exposed
        """
        definition = self._tools.get(name)
        if definition is None or context is None:
            return definition
        return definition if name in self._contexts.get(context, []) else None

    def get_all(self) -> List[ToolDefinition]:
        return list(self._tools.values())

    def get_by_category(self, category: ToolCategory) -> List[ToolDefinition]:
        return [d for d in self._tools.values() if d.category == category]

    def for_context(self, context: str) -> List[ToolDefinition]:
        """Tools exposed in ``context``, in configured order."""
        exposed = []
        for name in self._contexts.get(context, []):
            definition = self._tools.get(name)
            if definition is None:
                logger.warning("Context lists unregistered tool", context=context, tool=name)
                continue
            exposed.append(definition)
        return exposed

    def to_openai_realtime_schema(self, context: Optional[str] = None) -> List[Dict]:
        """
        Export tools in OpenAI Realtime API format.

        Args:
            context: Restrict to the tools exposed in this context (all tools if None)
        """
        definitions = self.for_context(context) if context is not None else self.get_all()
        return [d.to_openai_realtime_schema() for d in definitions]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools


def build_default_registry(contexts: Optional[Mapping[str, Iterable[str]]] = None) -> ToolRegistry:
    """Register the built-in market and portfolio tools."""
    from vivid_voice.tools.market import MARKET_TOOLS
    from vivid_voice.tools.portfolio import PORTFOLIO_TOOLS

    registry = ToolRegistry(contexts)
    for definition in MARKET_TOOLS + PORTFOLIO_TOOLS:
        registry.register(definition)
    logger.info("🛠️ Tool registry initialized", tools=len(registry), contexts=sorted(registry._contexts))
    return registry
