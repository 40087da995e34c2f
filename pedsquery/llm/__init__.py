"""
PedsQuery LLM Module

LLM integration components:
- MistralClient: Async HTTP client for Mistral chat completions
- build_messages: System prompt, history window and grounded user turn
- ResponseGenerator: Blocking and streaming answers with citations
"""

from pedsquery.llm.mistral_client import MistralClient
from pedsquery.llm.prompt_templates import build_conversation_context, build_messages
from pedsquery.llm.response_generator import ResponseGenerator, determine_confidence

__all__ = [
    "MistralClient",
    "build_messages",
    "build_conversation_context",
    "ResponseGenerator",
    "determine_confidence",
]
