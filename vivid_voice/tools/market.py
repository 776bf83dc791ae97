"""
Market data tools - read-only quotes, indicators and news.
"""

from vivid_voice.tools.arguments import (
    MarketNewsArguments,
    MarketPriceArguments,
    MultiplePricesArguments,
    TechnicalAnalysisArguments,
)
from vivid_voice.tools.base import ToolCategory, ToolDefinition, ToolParameter

_SYMBOL = ToolParameter(
    name="symbol",
    type="string",
    description="The stock ticker symbol (e.g., AAPL, GOOGL, MSFT)",
    required=True,
)

MARKET_PRICE = ToolDefinition(
    name="get_market_price",
    description=(
        "Get the current market price and daily change for a stock symbol. "
        "Use when the user asks about the price of a specific stock."
    ),
    category=ToolCategory.MARKET_DATA,
    arguments_model=MarketPriceArguments,
    parameters=[_SYMBOL],
)

TECHNICAL_ANALYSIS = ToolDefinition(
    name="get_technical_analysis",
    description=(
        "Get technical indicators (RSI, MACD, moving averages) and a trend summary "
        "for a stock over a timeframe."
    ),
    category=ToolCategory.MARKET_DATA,
    arguments_model=TechnicalAnalysisArguments,
    parameters=[
        _SYMBOL,
        ToolParameter(
            name="timeframe",
            type="string",
            description="Analysis window: 1d, 1w, 1m or 3m",
            enum=["1d", "1w", "1m", "3m"],
            default="1m",
        ),
    ],
)

MARKET_NEWS = ToolDefinition(
    name="get_market_news",
    description="Get recent market news, optionally filtered to one stock symbol.",
    category=ToolCategory.MARKET_DATA,
    arguments_model=MarketNewsArguments,
    parameters=[
        ToolParameter(
            name="symbol",
            type="string",
            description="Optional ticker to filter news by",
        ),
        ToolParameter(
            name="limit",
            type="integer",
            description="Number of articles to return (1-20)",
            default=5,
        ),
    ],
)

MULTIPLE_PRICES = ToolDefinition(
    name="get_multiple_prices",
    description="Get current prices for several stock symbols at once (up to 20).",
    category=ToolCategory.MARKET_DATA,
    arguments_model=MultiplePricesArguments,
    parameters=[
        ToolParameter(
            name="symbols",
            type="array",
            description="List of ticker symbols",
            required=True,
            items={"type": "string"},
        ),
    ],
)

MARKET_TOOLS = [MARKET_PRICE, TECHNICAL_ANALYSIS, MARKET_NEWS, MULTIPLE_PRICES]
