"""
Base classes for the tool catalogue.

Tools are executed by the remote Tool Execution Collaborator; this side only
describes them (for the realtime session's tool list) and validates the
arguments the remote service produces before forwarding a call.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel


class ToolCategory(Enum):
    """Category of tool, used for grouping and metrics labels."""
    MARKET_DATA = "market_data"  # Read-only quotes, news, indicators
    PORTFOLIO = "portfolio"      # Reads or mutates the user's holdings


@dataclass
class ToolParameter:
    """Definition of a tool parameter as advertised to the remote service."""
    name: str
    type: str  # "string", "integer", "boolean", "number", "array", "object"
    description: str
    required: bool = False
    enum: Optional[List[str]] = None
    default: Optional[Any] = None
    items: Optional[Dict[str, Any]] = None  # element schema for "array"

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "type": self.type,
            "description": self.description,
        }
        if self.enum:
            result["enum"] = self.enum
        if self.items:
            result["items"] = self.items
        if self.default is not None:
            result["default"] = self.default
        return result


@dataclass
class ToolDefinition:
    """
    Provider-facing tool definition.

    ``arguments_model`` is the pydantic model that validates the arguments of
    an incoming call; ``parameters`` is what the remote service is told.
    """
    name: str
    description: str
    category: ToolCategory
    arguments_model: Type[BaseModel]
    parameters: List[ToolParameter] = field(default_factory=list)
    max_execution_time: Optional[float] = None  # seconds; None => tools.default_timeout_sec

    def to_openai_realtime_schema(self) -> Dict[str, Any]:
        """
        Convert to OpenAI Realtime API function calling format.

        Realtime format has name/description at top level:
        {
            "type": "function",
            "name": "tool_name",
            "description": "Tool description",
            "parameters": {
                "type": "object",
                "properties": {...},
                "required": [...]
            }
        }
        """
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": {
                "type": "object",
                "properties": {p.name: p.to_dict() for p in self.parameters},
                "required": [p.name for p in self.parameters if p.required],
            },
        }
