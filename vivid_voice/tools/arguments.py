"""
Validated argument schemas for every registered tool.

The remote service sends tool arguments as a JSON string. They are parsed
through a tagged union keyed by tool name, so a call either yields the typed
arguments of exactly one tool or fails with ToolArgumentError.
"""

import json
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from vivid_voice.core.errors import ToolArgumentError

MAX_SYMBOLS = 20


def normalize_symbol(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError("symbol must be a string")
    symbol = value.strip().upper()
    if not symbol:
        raise ValueError("symbol must not be empty")
    return symbol


class BaseToolArguments(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        """Arguments as sent to the tool collaborator (wire field names)."""
        return self.model_dump(by_alias=True, exclude={"tool"}, exclude_none=True)


class _SymbolArguments(BaseToolArguments):
    symbol: str

    @field_validator("symbol", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> str:
        return normalize_symbol(value)


class MarketPriceArguments(_SymbolArguments):
    tool: Literal["get_market_price"] = "get_market_price"


class TechnicalAnalysisArguments(_SymbolArguments):
    tool: Literal["get_technical_analysis"] = "get_technical_analysis"
    timeframe: Literal["1d", "1w", "1m", "3m"] = "1m"


class MarketNewsArguments(BaseToolArguments):
    tool: Literal["get_market_news"] = "get_market_news"
    symbol: Optional[str] = None
    limit: int = Field(default=5, ge=1, le=20)

    @field_validator("symbol", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> Optional[str]:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return normalize_symbol(value)


class MultiplePricesArguments(BaseToolArguments):
    tool: Literal["get_multiple_prices"] = "get_multiple_prices"
    symbols: List[str] = Field(min_length=1, max_length=MAX_SYMBOLS)

    @field_validator("symbols", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> List[str]:
        if not isinstance(value, list):
            raise ValueError("symbols must be a list")
        return [normalize_symbol(v) for v in value]


class UserPortfolioArguments(BaseToolArguments):
    tool: Literal["get_user_portfolio"] = "get_user_portfolio"


class AddHoldingArguments(_SymbolArguments):
    tool: Literal["add_portfolio_holding"] = "add_portfolio_holding"
    quantity: float = Field(gt=0)
    avg_buy_price: Optional[float] = Field(default=None, gt=0, alias="avgBuyPrice")


class RemoveHoldingArguments(_SymbolArguments):
    tool: Literal["remove_portfolio_holding"] = "remove_portfolio_holding"


ToolArguments = Annotated[
    Union[
        MarketPriceArguments,
        TechnicalAnalysisArguments,
        MarketNewsArguments,
        MultiplePricesArguments,
        UserPortfolioArguments,
        AddHoldingArguments,
        RemoveHoldingArguments,
    ],
    Field(discriminator="tool"),
]

_adapter: TypeAdapter = TypeAdapter(ToolArguments)

KNOWN_TOOLS = frozenset(
    model.model_fields["tool"].default
    for model in (
        MarketPriceArguments,
        TechnicalAnalysisArguments,
        MarketNewsArguments,
        MultiplePricesArguments,
        UserPortfolioArguments,
        AddHoldingArguments,
        RemoveHoldingArguments,
    )
)


def _decode_payload(payload: Union[str, Dict[str, Any], None]) -> Dict[str, Any]:
    if payload is None:
        return {}
    if isinstance(payload, dict):
        return dict(payload)
    if isinstance(payload, str):
        if not payload.strip():
            return {}
        try:
            decoded = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ToolArgumentError(f"Invalid tool arguments: {exc.msg}") from exc
        if not isinstance(decoded, dict):
            raise ToolArgumentError("Invalid tool arguments: expected a JSON object")
        return decoded
    raise ToolArgumentError(f"Invalid tool arguments: unsupported type {type(payload).__name__}")


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p not in KNOWN_TOOLS)
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def parse_tool_arguments(tool_name: str, payload: Union[str, Dict[str, Any], None]) -> BaseToolArguments:
    """
    Validate raw tool-call arguments for ``tool_name``.

    Raises:
        ToolArgumentError: Unknown tool, malformed JSON or schema violation
    """
    if tool_name not in KNOWN_TOOLS:
        raise ToolArgumentError(f"Unknown tool: {tool_name}")
    data = _decode_payload(payload)
    data["tool"] = tool_name
    try:
        return _adapter.validate_python(data)
    except ValidationError as exc:
        raise ToolArgumentError(f"Invalid arguments for {tool_name}: {_describe(exc)}") from exc
