"""
=============================================================================
ONBOARDING.PY — AI onboarding conversation
=============================================================================
A short coached conversation that ends with 3 recommended behaviors.

Phases:
  welcome → clarify_aspiration → recommend_behaviors (terminal)

  - Each of the first two user messages goes to the LLM, which answers with
    {message, nextPhase, suggestions, data}. "data" (aspiration,
    motivations, obstacles, context) is merged into the profile.
  - From the third message on (message_count >= 2) the engine stops asking
    and recommends: it generates the 3 behaviors itself, whatever the
    conversation looked like. The dialogue never needs a 4th user turn.
  - If the LLM fails or answers with the wrong shape, the user gets an
    apology and stays in the same phase (same message_count) to retry.

The conversation is closed by POST /api/onboarding/complete, choosing
"automatic" (habits created from the behaviors) or "manual".
"""

import json
import logging
from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.orm import Session

import llm
from models import Habit, ImpactAction, User
from schemas import (
    Behavior, CelebrationPrefs, ConversationState, OnboardingMessageResponse,
    OnboardingProfile
)

logger = logging.getLogger("greenstreak.onboarding")

RECOMMENDATION_CUTOVER = 2
# RECOMMENDATION_CUTOVER → user messages answered before we recommend
BEHAVIOR_COUNT = 3

APOLOGY_MESSAGE = (
    "I'm sorry, I'm having trouble thinking right now. "
    "Could you send that again?"
)

CHOICE_SUGGESTIONS = ["Create these habits for me", "I'll add my own habits"]

SYSTEM_PROMPT = """You are John Ellison, a behavior change coach inspired by BJ Fogg's methodology. You help people clarify their aspirations and choose effective behaviors.

Key principles:
1. Help people do what they already want to do
2. Help them feel successful
3. Clarify the aspiration before selecting behaviors

Your conversation style:
- Warm, encouraging and insightful
- Ask one thoughtful follow-up question at a time
- Keep responses conversational and supportive (2-3 sentences max)

CRITICAL: Always respond with valid JSON in this format:
{
  "message": "your response to the user",
  "nextPhase": "welcome|clarify_aspiration",
  "suggestions": ["optional short replies the user could send"],
  "data": {"aspiration": "...", "motivations": ["..."], "obstacles": ["..."], "context": "..."}
}
Only include in "data" what the user actually told you."""

PHASE_INSTRUCTIONS = {
    "welcome": (
        "The user just told you what change they want. Capture it as their aspiration, "
        "reflect it back warmly and ask WHY it matters to them right now."
    ),
    "clarify_aspiration": (
        "Dig into their motivations and what has made this hard before. Capture motivations "
        "and obstacles, plus any context about their daily life. Let them know you'll suggest "
        "3 small behaviors next."
    ),
}


# =============================================================================
# ===================== LLM RESPONSE SCHEMAS ==================================
# =============================================================================
# Anything that does not match these shapes is treated as a failed call.

class TurnData(BaseModel):
    aspiration: Optional[str] = None
    motivations: Optional[list[str]] = None
    obstacles: Optional[list[str]] = None
    context: Optional[str] = None


class TurnResponse(BaseModel):
    message: str = Field(min_length=1)
    nextPhase: Literal["welcome", "clarify_aspiration", "recommend_behaviors"]
    suggestions: list[str] = []
    data: Optional[TurnData] = None


class BehaviorList(BaseModel):
    behaviors: list[Behavior]


# =============================================================================
# ===================== RECOMMENDATION GENERATOR ==============================
# =============================================================================

FALLBACK_BEHAVIORS = [
    Behavior(
        name="Take a 10-minute walk after lunch",
        why_effective="A short walk is easy to start and lifts energy and mood for the afternoon.",
        ability_score=5,
        trigger="After I finish lunch",
        category="fitness",
        icon="dumbbell",
        impact_action=ImpactAction.plant_tree,
        impact_amount=1,
    ),
    Behavior(
        name="Drink a glass of water when I wake up",
        why_effective="Tying hydration to waking up makes it automatic and sets up a healthy day.",
        ability_score=5,
        trigger="After my feet touch the floor in the morning",
        category="wellness",
        icon="tint",
        impact_action=ImpactAction.rescue_plastic,
        impact_amount=1,
    ),
    Behavior(
        name="Write down one thing I'm grateful for",
        why_effective="A one-line gratitude note trains attention toward progress and keeps motivation up.",
        ability_score=4,
        trigger="After I brush my teeth at night",
        category="mindfulness",
        icon="heart",
        impact_action=ImpactAction.provide_water,
        impact_amount=1,
    ),
]

RECOMMENDATION_PROMPT = """You design tiny, effective habits using BJ Fogg's Tiny Habits method.
Return JSON: {"behaviors": [exactly 3 objects]} where each object has:
- "name": clear behavior description (max 100 characters)
- "whyEffective": brief explanation of why this helps the aspiration
- "abilityScore": 1-5, how easy this is for them
- "trigger": when/how they will do it ("After I ...")
- "category": wellness|fitness|learning|productivity|creativity|social|mindfulness|environmental
- "icon": one of leaf|book-open|dumbbell|heart|tint|paint-brush|users
- "impactAction": plant_tree|rescue_plastic|offset_carbon|plant_kelp|provide_water|sponsor_bees (all 3 different)
- "impactAmount": positive integer between 1 and 20
Connect personal growth with environmental impact."""


def assign_distinct_actions(behaviors: list[Behavior]) -> list[Behavior]:
    """
    Walks the behaviors in order; an impact action already taken is replaced
    by the first unused one in enumeration order. Deterministic.
    """
    used = set()
    result = []
    for behavior in behaviors:
        action = behavior.impact_action
        if action in used:
            action = next(a for a in ImpactAction if a not in used)
            behavior = behavior.model_copy(update={"impact_action": action})
        used.add(action)
        result.append(behavior)
    return result


def generate_recommendations(aspiration: Optional[str], context: Optional[str] = None) -> list[Behavior]:
    """Always returns exactly 3 behaviors with pairwise-distinct impact actions."""
    prompt = (
        f"Aspiration: \"{aspiration or 'feel healthier and happier'}\"\n"
        f"Context: \"{context or 'not provided'}\"\n"
        "Suggest 3 behaviors."
    )
    try:
        raw = llm.complete_json(RECOMMENDATION_PROMPT, prompt)
        behaviors = BehaviorList.model_validate(raw).behaviors
    except (llm.LLMError, ValidationError) as e:
        logger.warning(f"⚠️ Recommendations fell back to defaults: {e}")
        return [b.model_copy() for b in FALLBACK_BEHAVIORS]

    if len(behaviors) != BEHAVIOR_COUNT:
        logger.warning(f"⚠️ LLM returned {len(behaviors)} behaviors, using defaults")
        return [b.model_copy() for b in FALLBACK_BEHAVIORS]

    return assign_distinct_actions(behaviors)


# =============================================================================
# ===================== CONVERSATION ENGINE ===================================
# =============================================================================

def process_message(message: str, state: ConversationState) -> OnboardingMessageResponse:
    """Advances the conversation by one user message."""
    if state.message_count >= RECOMMENDATION_CUTOVER or state.phase == "recommend_behaviors":
        return _recommend(message, state)

    instruction = PHASE_INSTRUCTIONS[state.phase]
    context_prompt = (
        f"Current phase: {state.phase}\n"
        f"Phase instruction: {instruction}\n"
        f"Current data: {json.dumps(state.data.model_dump(exclude={'selected_behaviors'}))}\n"
        f"User's message: \"{message}\""
    )

    try:
        raw = llm.complete_json(SYSTEM_PROMPT, context_prompt)
        turn = TurnResponse.model_validate(raw)
    except (llm.LLMError, ValidationError) as e:
        logger.warning(f"⚠️ Onboarding turn failed in phase {state.phase}: {e}")
        return OnboardingMessageResponse(
            response=APOLOGY_MESSAGE,
            next_phase=state.phase,
            suggestions=[],
            updated_data=state.data,
            message_count=state.message_count,
        )

    updated = _merge(state.data, turn.data)
    if state.phase == "welcome" and not updated.aspiration:
        updated.aspiration = message

    # welcome always moves on; recommend_behaviors is entered by the engine only,
    # so whatever nextPhase the model picked, the answer lands in clarify_aspiration
    if turn.nextPhase != "clarify_aspiration":
        logger.debug(f"Model proposed phase {turn.nextPhase}, clamped to clarify_aspiration")

    return OnboardingMessageResponse(
        response=turn.message,
        next_phase="clarify_aspiration",
        suggestions=turn.suggestions,
        updated_data=updated,
        message_count=state.message_count + 1,
    )


def _merge(profile: OnboardingProfile, data: Optional[TurnData]) -> OnboardingProfile:
    updated = profile.model_copy(deep=True)
    if data is None:
        return updated
    if data.aspiration:
        updated.aspiration = data.aspiration
    if data.motivations:
        updated.motivations = updated.motivations + [m for m in data.motivations if m not in updated.motivations]
    if data.obstacles:
        updated.obstacles = updated.obstacles + [o for o in data.obstacles if o not in updated.obstacles]
    if data.context:
        updated.context = data.context
    return updated


def _recommend(message: str, state: ConversationState) -> OnboardingMessageResponse:
    updated = state.data.model_copy(deep=True)
    if not updated.context:
        updated.context = message
    behaviors = generate_recommendations(updated.aspiration, updated.context)
    updated.selected_behaviors = behaviors

    lines = "\n".join(f"{i}. {b.name} ({b.trigger})" for i, b in enumerate(behaviors, start=1))
    response = (
        f"Here are 3 small behaviors that fit your aspiration"
        f"{' to ' + updated.aspiration if updated.aspiration else ''}:\n{lines}\n"
        "Each one also creates real environmental impact. "
        "Shall I create these habits for you, or would you rather add your own?"
    )
    logger.info(f"🎯 Recommended behaviors: {[b.impact_action.value for b in behaviors]}")

    return OnboardingMessageResponse(
        response=response,
        next_phase="recommend_behaviors",
        suggestions=CHOICE_SUGGESTIONS,
        updated_data=updated,
        message_count=state.message_count + 1,
        suggested_behaviors=behaviors,
    )


# =============================================================================
# ===================== COMPLETION ============================================
# =============================================================================

def habits_from_behaviors(behaviors: list[Behavior]) -> list[dict]:
    return [
        {
            "name": b.name,
            "description": f"{b.why_effective} Trigger: {b.trigger}"[:200],
            "icon": b.icon,
            "category": b.category.value,
            "impact_action": b.impact_action.value,
            "impact_amount": b.impact_amount,
        }
        for b in behaviors
    ]


def complete_onboarding(
    db: Session, user: User, profile: OnboardingProfile, prefs: CelebrationPrefs
) -> list[Habit]:
    """
    Saves profile and prefs, marks onboarding done and, for the "automatic"
    choice, creates one habit per selected behavior.
    """
    created = []
    if profile.habit_creation_choice == "automatic":
        for data in habits_from_behaviors(profile.selected_behaviors[:BEHAVIOR_COUNT]):
            habit = Habit(user_id=user.id, **data)
            db.add(habit)
            created.append(habit)

    user.onboarding_profile = profile.model_dump(mode="json", by_alias=True)
    user.celebration_prefs = prefs.model_dump(mode="json", by_alias=True)
    user.onboarding_completed = True
    db.commit()

    for habit in created:
        db.refresh(habit)
    db.refresh(user)

    logger.info(f"🎓 Onboarding completed for {user.id} ({profile.habit_creation_choice}, {len(created)} habits)")
    return created
