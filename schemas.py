"""
=============================================================================
SCHEMAS.PY — Validation schemas (Pydantic)
=============================================================================
Models (SQLAlchemy) define the TABLES; Schemas (Pydantic) define what the API
accepts and returns.

The frontend speaks camelCase ("impactAction", "treesPlanted"), Python speaks
snake_case. Every schema derives from ApiModel, which:
  - serializes with camelCase aliases
  - accepts both camelCase and snake_case on input
  - reads straight from ORM objects (from_attributes)

Naming convention:
  XxxCreate → POST body
  XxxUpdate → PUT/PATCH body
  XxxResponse → what the API returns
"""

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from models import HabitCategory, ImpactAction


class ApiModel(BaseModel):
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "from_attributes": True,
    }


OnboardingPhase = Literal["welcome", "clarify_aspiration", "recommend_behaviors"]


# =============================================================================
# ===================== USERS =================================================
# =============================================================================

class CelebrationPrefs(ApiModel):
    """How the user likes to be celebrated"""
    personality_tone: Literal["warm", "direct", "playful", "scientist"] = "warm"
    style: Literal["minimal", "standard", "hype"] = "standard"
    # style → verbosity of the message
    emoji_level: int = Field(default=2, ge=0, le=3)
    surprise_level: int = Field(default=2, ge=0, le=3)
    themes: list[str] = []
    sound_enabled: bool = True


class UserResponse(ApiModel):
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    trees_planted: int
    current_streak: int
    longest_streak: int
    onboarding_completed: bool
    onboarding_profile: Optional[dict] = None
    celebration_prefs: Optional[dict] = None
    created_at: Optional[datetime] = None


# =============================================================================
# ===================== HABITS ================================================
# =============================================================================

class HabitCreate(ApiModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=200)
    icon: str = Field(default="leaf", min_length=1, max_length=50)
    category: HabitCategory = HabitCategory.wellness
    impact_action: ImpactAction = ImpactAction.plant_tree
    impact_amount: int = Field(default=1, ge=1, le=100)


class HabitUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=200)
    icon: Optional[str] = Field(default=None, min_length=1, max_length=50)
    category: Optional[HabitCategory] = None
    impact_action: Optional[ImpactAction] = None
    impact_amount: Optional[int] = Field(default=None, ge=1, le=100)


class HabitResponse(ApiModel):
    id: int
    user_id: str
    name: str
    description: Optional[str]
    icon: str
    category: str
    is_active: bool
    streak: int
    impact_action: str
    impact_amount: int
    total_impact_earned: int
    created_at: Optional[datetime] = None


class DashboardHabit(HabitResponse):
    completed_today: bool = False


class ToggleResponse(ApiModel):
    completed: bool
    streak: int
    impact_created: bool
    impact_id: Optional[str] = None
    impact_action: str
    impact_amount: int
    total_impact_earned: int
    message: str


class FeedbackCreate(ApiModel):
    rating: int = Field(ge=1, le=5)
    day: Optional[date] = None
    # day → defaults to today


class CompletionResponse(ApiModel):
    id: int
    habit_id: int
    completed_at: datetime
    completed_on: date
    impact_created: bool
    impact_id: Optional[str]
    impact_action: str
    impact_amount: int
    streak_at_completion: int
    emotional_feedback: Optional[int]


# =============================================================================
# ===================== DASHBOARD / ANALYTICS =================================
# =============================================================================

class DayProgress(ApiModel):
    day: str
    # day → short weekday name ("Mon")
    date: date
    completed: int
    total: int
    is_today: bool


class DashboardResponse(ApiModel):
    user: UserResponse
    habits: list[DashboardHabit]
    today_completions: int
    total_habits: int
    weekly_progress: list[DayProgress]
    monthly_trees: int
    co2_offset: float


class ImpactEntry(ApiModel):
    id: int
    habit_id: int
    habit_name: str
    impact_action: str
    impact_amount: int
    impact_created: bool
    impact_id: Optional[str] = None
    completed_at: datetime
    streak: int


class ImpactLocation(ApiModel):
    id: str
    country: str
    region: str
    coordinates: tuple[float, float]
    # coordinates → (longitude, latitude)
    impact_type: str
    total_amount: int
    project_name: str
    project_description: str
    completion_count: int


class HabitAnalytics(ApiModel):
    id: int
    name: str
    category: str
    streak: int
    total_completions: int
    impact_action: str
    impact_amount: int
    total_impact_earned: int


class DailyImpact(ApiModel):
    date: date
    completions: int
    impact: dict[str, int]
    # impact → {"plant_tree": 2, "provide_water": 5, ...}


class AnalyticsResponse(ApiModel):
    habits: list[HabitAnalytics]
    progress_data: list[DailyImpact]
    impact_summary: dict[str, int]


# =============================================================================
# ===================== ONBOARDING ============================================
# =============================================================================

class Behavior(ApiModel):
    """A recommended behavior. Ephemeral until turned into a Habit."""
    name: str = Field(min_length=1, max_length=100)
    why_effective: str = Field(min_length=1)
    ability_score: int = Field(ge=1, le=5)
    trigger: str = Field(min_length=1)
    category: HabitCategory
    icon: str = Field(min_length=1, max_length=50)
    impact_action: ImpactAction
    impact_amount: int = Field(ge=1, le=100)


class OnboardingProfile(ApiModel):
    aspiration: Optional[str] = None
    motivations: list[str] = []
    obstacles: list[str] = []
    context: Optional[str] = None
    selected_behaviors: list[Behavior] = Field(default=[], max_length=3)
    habit_creation_choice: Optional[Literal["automatic", "manual"]] = None


class ConversationState(ApiModel):
    phase: OnboardingPhase = "welcome"
    message_count: int = Field(default=0, ge=0)
    data: OnboardingProfile = OnboardingProfile()


class OnboardingMessageRequest(ApiModel):
    message: str = Field(min_length=1, max_length=2000)
    conversation_state: ConversationState = ConversationState()


class OnboardingMessageResponse(ApiModel):
    response: str
    next_phase: OnboardingPhase
    suggestions: list[str] = []
    updated_data: OnboardingProfile
    message_count: int
    suggested_behaviors: Optional[list[Behavior]] = None


class OnboardingCompleteRequest(ApiModel):
    onboarding_profile: OnboardingProfile
    celebration_prefs: CelebrationPrefs = CelebrationPrefs()


class OnboardingCompleteResponse(ApiModel):
    success: bool
    user: UserResponse
    habits: list[HabitResponse]


# =============================================================================
# ===================== CELEBRATION ===========================================
# =============================================================================

class CelebrationMessage(ApiModel):
    title: str
    message: str
    motivational_note: str
    progress_insight: Optional[str] = None
