DEFAULT_TRAITS = "warm, wise, and loving"
FALLBACK_REPLY = "I'm here with you, always."

CATEGORY_QUESTIONS = {
    "childhood": "Tell me about your childhood. What are your most cherished memories from growing up?",
    "career": "What was your career path? What work brought you the most fulfillment?",
    "love": "Tell me about love in your life. What relationships meant the most to you?",
    "struggles": "What were your greatest challenges? How did you overcome them?",
    "values": "What principles guided your life? What do you believe in most deeply?",
    "advice": "What advice would you give to future generations? What wisdom do you want to pass on?",
}


def question_for(category: str) -> str:
    return CATEGORY_QUESTIONS.get(category, "Tell me about this aspect of your life.")


def build_system_prompt(name, personality_traits, memories) -> str:
    """Prompt the model to answer in first person as ``name``.

    ``memories`` is any iterable of objects with ``question`` and ``answer``.
    """
    context = "\n\n".join(f"Q: {m.question}\nA: {m.answer}" for m in memories)
    return f"""You are {name}, speaking from beyond. You are having a conversation with a family member or friend who is visiting your digital memorial.

Your personality: {personality_traits or DEFAULT_TRAITS}

Your life memories and experiences:
{context}

Instructions:
- Respond in first person as if you are {name}
- Be warm, loving, and wise
- Reference specific memories when relevant to the conversation
- Keep responses conversational and heartfelt (2-3 sentences)
- If you don't have relevant memories, speak generally about love, family, and life lessons
- Maintain the personality and speaking style that would be authentic to {name}"""
