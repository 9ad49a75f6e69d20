"""Canned supportive replies used in demo mode."""

from __future__ import annotations

import random

DEMO_MODEL = "demo"
DEMO_LABEL = "[Demo Mode - Using simulated responses]"

DEMO_REPLIES: tuple[str, ...] = (
    "Thank you for sharing that with me. I'm here to listen and support you. "
    "How long have you been feeling this way?",
    "I hear you, and your feelings are completely valid. It takes courage to open up "
    "about what you're going through. What do you think would help you feel a bit "
    "better right now?",
    "That sounds really challenging. Remember, it's okay to not be okay sometimes. "
    "Would you like to talk more about what's been on your mind?",
    "I appreciate you trusting me with this. You're taking an important step by "
    "talking about your feelings. How can I best support you today?",
    "It's completely normal to feel overwhelmed sometimes. You're showing great "
    "strength by reaching out. What's been the most difficult part for you?",
)


def demo_reply(rng: random.Random | None = None) -> str:
    """Pick a canned reply, labelled as simulated."""
    choice = (rng or random).choice(DEMO_REPLIES)
    return f"{choice}\n\n{DEMO_LABEL}"
