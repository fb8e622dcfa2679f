"""
=============================================================================
MODELS.PY — Database models (tables)
=============================================================================
Each class = one table. Each attribute = one column.

RELATIONSHIPS:
  USER
  ├── habits[] ──→ completions[]
  └── completions[]   (denormalized owner, for per-user day queries)

The User row is keyed by the identity provider's subject id, so it is a
string and not an autoincrement integer.
"""

import enum
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Boolean, Text, Date, DateTime, ForeignKey, JSON,
    UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from database import Base


# =============================================================================
# ===================== ENUMS =================================================
# =============================================================================

class ImpactAction(str, enum.Enum):
    """The environmental impact a completion buys. One vocabulary for every partner."""
    plant_tree = "plant_tree"          # 🌳 trees
    rescue_plastic = "rescue_plastic"  # 🐋 plastic bottles
    offset_carbon = "offset_carbon"    # ☁️ kg CO₂
    plant_kelp = "plant_kelp"          # 🌿 kelp plants
    provide_water = "provide_water"    # 💧 liters
    sponsor_bees = "sponsor_bees"      # 🐝 bees


class HabitCategory(str, enum.Enum):
    wellness = "wellness"
    fitness = "fitness"
    learning = "learning"
    productivity = "productivity"
    creativity = "creativity"
    social = "social"
    mindfulness = "mindfulness"
    environmental = "environmental"


# =============================================================================
# ===================== TABLE 1: USERS ========================================
# =============================================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String(255), primary_key=True)
    # id → "sub" claim of the identity provider

    # ── Profile (refreshed from the token on every login) ──
    email = Column(String(255), nullable=True, index=True)
    # email → profile data only; two subjects may share one
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    profile_image_url = Column(String(500), nullable=True)

    # ── Impact counters ──
    trees_planted = Column(Integer, nullable=False, default=0)
    current_streak = Column(Integer, nullable=False, default=0)
    longest_streak = Column(Integer, nullable=False, default=0)

    # ── Onboarding ──
    onboarding_completed = Column(Boolean, nullable=False, default=False)
    onboarding_profile = Column(JSON, nullable=True)
    # onboarding_profile → aspiration, motivations, obstacles, selected behaviors...
    celebration_prefs = Column(JSON, nullable=True)
    # celebration_prefs → tone/style of the celebration messages

    # ── Timestamps ──
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    habits = relationship("Habit", back_populates="user", cascade="all, delete-orphan")
    completions = relationship("HabitCompletion", back_populates="user", cascade="all, delete-orphan")


# =============================================================================
# ===================== TABLE 2: HABITS =======================================
# =============================================================================

class Habit(Base):
    __tablename__ = "habits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), ForeignKey("users.id"), nullable=False, index=True)

    # ── Habit data ──
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    icon = Column(String(50), nullable=False, default="leaf")
    category = Column(String(30), nullable=False, default=HabitCategory.wellness.value)

    # ── State ──
    is_active = Column(Boolean, nullable=False, default=True)
    # is_active=False → deleted from the user's point of view, history kept
    streak = Column(Integer, nullable=False, default=0)

    # ── Impact ──
    impact_action = Column(String(30), nullable=False, default=ImpactAction.plant_tree.value)
    impact_amount = Column(Integer, nullable=False, default=1)
    total_impact_earned = Column(Integer, nullable=False, default=0)
    # total_impact_earned only grows: un-completing never gives impact back

    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="habits")
    completions = relationship("HabitCompletion", back_populates="habit", cascade="all, delete-orphan")


# =============================================================================
# ===================== TABLE 3: HABIT_COMPLETIONS ============================
# =============================================================================
# One row per habit per calendar day. Deleted (not archived) on un-complete.

class HabitCompletion(Base):
    __tablename__ = "habit_completions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    habit_id = Column(Integer, ForeignKey("habits.id"), nullable=False)
    user_id = Column(String(255), ForeignKey("users.id"), nullable=False)

    completed_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_on = Column(Date, nullable=False)
    # completed_on → the calendar day the completion counts for

    # ── Impact attribution (copied from the habit at completion time) ──
    impact_created = Column(Boolean, nullable=False, default=False)
    impact_id = Column(String(255), nullable=True)
    # impact_id → opaque reference returned by the partner
    impact_action = Column(String(30), nullable=False)
    impact_amount = Column(Integer, nullable=False)
    streak_at_completion = Column(Integer, nullable=False, default=0)

    emotional_feedback = Column(Integer, nullable=True)
    # emotional_feedback → 1-5, how the user felt after doing it

    # ── Unique constraint: one completion per habit per day ──
    __table_args__ = (
        UniqueConstraint("habit_id", "completed_on", name="uq_habit_completed_on"),
        Index("ix_completions_user_completed_at", "user_id", "completed_at"),
    )

    habit = relationship("Habit", back_populates="completions")
    user = relationship("User", back_populates="completions")
