"""
Prompt Templates for PedsQuery

Builds the chat message list sent to the generator: a fixed system
instruction, a bounded window of prior turns, and one user turn carrying
the textbook context and the literal question.
"""

from collections.abc import Sequence

from pedsquery.models import ChatTurn

DEFAULT_HISTORY_WINDOW = 6

SYSTEM_PROMPT = """You are a pediatric medical assistant that answers exclusively from the Nelson Textbook of Pediatrics (22nd Edition). Work through each question in order:

1. UNDERSTAND: parse the medical query precisely
2. BASICS: identify the pediatric domain (cardiology, neonatology, etc.)
3. BREAK DOWN: split into sub-questions (definitions, diagnosis, management, prognosis)
4. ANALYZE: cross-check the retrieved Nelson content for consistency
5. BUILD: write an evidence-based response with citations
6. EDGE CASES: consider age groups, comorbidities, contraindications
7. FINAL ANSWER: present a clinically reliable response

Requirements:
- Use only information from the Nelson Textbook context provided
- Always cite chapter, section and page when available
- Use professional terminology appropriate for healthcare professionals
- Format the response in markdown
- If the context does not contain the information, say so explicitly
- Never speculate beyond the Nelson Textbook
- State a confidence level (high/medium/low) based on evidence strength
- Consider pediatric factors: age, weight, developmental stage
- Include relevant warnings or contraindications"""

USER_TEMPLATE = """Context from Nelson Textbook of Pediatrics:

{context}

User Query: {query}

Please provide a comprehensive, evidence-based response following the chain of thought process."""


def build_conversation_context(
    messages: Sequence[ChatTurn],
    max_messages: int = DEFAULT_HISTORY_WINDOW,
) -> list[dict[str, str]]:
    """Most recent max_messages turns as role/content dicts, oldest first."""
    if max_messages <= 0:
        return []
    return [turn.to_message() for turn in list(messages)[-max_messages:]]


def build_messages(
    query: str,
    context: str,
    history: Sequence[ChatTurn] | None = None,
    history_window: int = DEFAULT_HISTORY_WINDOW,
) -> list[dict[str, str]]:
    """System instruction, recent history, then the grounded user turn."""
    messages = [{"role": "system", "content": SYSTEM_PROMPT}]
    messages.extend(build_conversation_context(history or [], history_window))
    messages.append(
        {"role": "user", "content": USER_TEMPLATE.format(context=context, query=query)}
    )
    return messages
