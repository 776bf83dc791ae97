"""
Vivid voice: realtime voice session orchestrator.

Holds a spoken, interruptible conversation with the OpenAI Realtime service
while it calls market-data and portfolio tools mid-conversation.
"""

__version__ = "0.3.0"
