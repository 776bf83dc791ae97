"""
Portfolio tools - read and modify the signed-in user's holdings.

These tools act on behalf of the session identity; the collaborator rejects
them when the session is anonymous.
"""

from vivid_voice.tools.arguments import (
    AddHoldingArguments,
    RemoveHoldingArguments,
    UserPortfolioArguments,
)
from vivid_voice.tools.base import ToolCategory, ToolDefinition, ToolParameter

USER_PORTFOLIO = ToolDefinition(
    name="get_user_portfolio",
    description="Get the user's portfolio holdings with current value and profit/loss.",
    category=ToolCategory.PORTFOLIO,
    arguments_model=UserPortfolioArguments,
)

ADD_HOLDING = ToolDefinition(
    name="add_portfolio_holding",
    description=(
        "Add a stock position to the user's portfolio. "
        "Confirm the symbol and quantity with the user before calling."
    ),
    category=ToolCategory.PORTFOLIO,
    arguments_model=AddHoldingArguments,
    parameters=[
        ToolParameter(name="symbol", type="string", description="Ticker symbol to add", required=True),
        ToolParameter(name="quantity", type="number", description="Number of shares", required=True),
        ToolParameter(
            name="avgBuyPrice",
            type="number",
            description="Average purchase price per share; defaults to the current price",
        ),
    ],
)

REMOVE_HOLDING = ToolDefinition(
    name="remove_portfolio_holding",
    description="Remove a stock position from the user's portfolio.",
    category=ToolCategory.PORTFOLIO,
    arguments_model=RemoveHoldingArguments,
    parameters=[
        ToolParameter(name="symbol", type="string", description="Ticker symbol to remove", required=True),
    ],
)

PORTFOLIO_TOOLS = [USER_PORTFOLIO, ADD_HOLDING, REMOVE_HOLDING]
