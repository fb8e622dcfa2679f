"""
=============================================================================
CELEBRATION.PY — Celebration messages after a completion
=============================================================================
Asks the LLM for a short personalized "well done" message, conditioned on
the user's preferences:
  tone  → warm | direct | playful | scientist
  style → minimal | standard | hype

The call is time-boxed (10 s). On ANY failure the user gets a deterministic
template message that still names the habit, the streak and the impact.
A broken celebration is never shown.
"""

import re
import logging
from typing import Optional

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.orm import Session

import llm
from completions import recent_feedback
from impact import describe_impact, impact_emoji
from models import Habit, User
from schemas import CelebrationMessage, CelebrationPrefs, OnboardingProfile

logger = logging.getLogger("greenstreak.celebration")

CELEBRATION_TIMEOUT_SECONDS = 10.0
MAX_SENTENCES = 4
MAX_MESSAGE_LENGTH = 255
TRIMMED_LENGTH = 215
TRIM_ENDING = "... You're building something amazing! 🌟"

PERSONALITY_PROMPTS = {
    "warm": "Be warm, encouraging and personally supportive, like a caring friend celebrating with them.",
    "direct": "Be clear, straightforward and focused on results. Acknowledge the achievement efficiently.",
    "playful": "Be enthusiastic, fun and energetic! Use engaging language and genuine excitement.",
    "scientist": "Be analytical and data-driven. Focus on measurable impact and the benefits of consistency.",
}

STYLE_PROMPTS = {
    "minimal": "Keep it concise: 2 short sentences.",
    "standard": "Provide a balanced celebration of 3 sentences.",
    "hype": "Go all out! Be celebratory and emphasize the significance of this moment, in 4 sentences.",
}


class CelebrationContext(BaseModel):
    habit_name: str
    streak: int
    impact_action: str
    impact_amount: int
    user_name: Optional[str] = None
    user_aspiration: Optional[str] = None
    user_context: Optional[str] = None
    emotional_feedback_history: list[int] = []
    prefs: CelebrationPrefs = CelebrationPrefs()


class LLMCelebration(BaseModel):
    message: str = Field(min_length=1)


def enforce_message_limits(message: str) -> str:
    """At most 4 sentences and 255 characters, mobile friendly."""
    sentences = [s.strip() for s in re.split(r"(?<=[.!?])\s+", message.strip()) if s.strip()]
    result = " ".join(sentences[:MAX_SENTENCES])
    return limit_length(result)


def limit_length(message: str) -> str:
    if len(message) > MAX_MESSAGE_LENGTH:
        return message[:TRIMMED_LENGTH].rstrip() + TRIM_ENDING
    return message


def build_context(db: Session, user: User, habit: Habit) -> CelebrationContext:
    """Everything we know about the user that makes the message personal."""
    profile = OnboardingProfile.model_validate(user.onboarding_profile or {})
    prefs = CelebrationPrefs.model_validate(user.celebration_prefs or {})
    return CelebrationContext(
        habit_name=habit.name,
        streak=habit.streak,
        impact_action=habit.impact_action,
        impact_amount=habit.impact_amount,
        user_name=user.first_name,
        user_aspiration=profile.aspiration,
        user_context=profile.context,
        emotional_feedback_history=recent_feedback(db, user.id),
        prefs=prefs,
    )


def _progress_insight(context: CelebrationContext) -> Optional[str]:
    ratings = context.emotional_feedback_history
    if len(ratings) < 3:
        return None
    average = sum(ratings) / len(ratings)
    if average >= 4:
        return "Your recent check-ins show this habit keeps making you feel great."
    if average <= 2:
        return "Recent days felt hard, and you showed up anyway. That's what counts."
    return None


def generate_celebration(context: CelebrationContext) -> CelebrationMessage:
    impact_text = describe_impact(context.impact_action, context.impact_amount)
    day_word = "day" if context.streak == 1 else "days"

    system_prompt = (
        "You are John Ellison, a habit coach who celebrates with genuine enthusiasm and variety.\n"
        f"{PERSONALITY_PROMPTS[context.prefs.personality_tone]}\n"
        f"{STYLE_PROMPTS[context.prefs.style]}\n"
        "Connect habit → aspiration → environmental impact, in that order. "
        f"Use about {context.prefs.emoji_level} emojis. Keep it under 255 characters.\n"
        'Return JSON with ONE field only: {"message": "..."}'
    )
    user_prompt = (
        f"- User: {context.user_name or 'there'}\n"
        f"- Aspiration: \"{context.user_aspiration or 'personal growth and wellness'}\"\n"
        f"- Habit completed: \"{context.habit_name}\"\n"
        f"- Current streak: {context.streak} {day_word}\n"
        f"- Environmental impact: just {impact_text}"
    )

    try:
        raw = llm.complete_json(
            system_prompt,
            user_prompt,
            model=llm.OPENAI_CELEBRATION_MODEL,
            timeout=CELEBRATION_TIMEOUT_SECONDS,
        )
        result = LLMCelebration.model_validate(raw)
    except (llm.LLMError, ValidationError) as e:
        logger.warning(f"⚠️ Celebration fell back to template for '{context.habit_name}': {e}")
        return fallback_celebration(context)

    return CelebrationMessage(
        title="Great Work!",
        message=enforce_message_limits(result.message),
        motivational_note="Keep going!",
        progress_insight=_progress_insight(context),
    )


def fallback_celebration(context: CelebrationContext) -> CelebrationMessage:
    """Template message. Always names the streak and the habit."""
    emoji = impact_emoji(context.impact_action)
    impact_text = describe_impact(context.impact_action, context.impact_amount)
    day_word = "day" if context.streak == 1 else "days"

    title = "Outstanding Work!"
    if context.streak >= 30:
        title = "Monthly Milestone Master!"
    elif context.streak >= 7:
        title = "Week Streak Champion!"

    # short greeting so habit name and streak always survive the length limit.
    # Only the length limit applies here: names may contain sentence punctuation.
    greeting = f"Excellent work, {context.user_name[:30]}!" if context.user_name else "Excellent work!"
    message = (
        f"{greeting} {emoji} {context.streak} {day_word} in a row of \"{context.habit_name}\". "
        f"You just {impact_text}."
    )
    if context.streak >= 7:
        message += " That streak shows real dedication!"
    else:
        message += " You're building something incredible!"

    return CelebrationMessage(
        title=title,
        message=limit_length(message),
        motivational_note="Keep going!",
        progress_insight=_progress_insight(context),
    )
