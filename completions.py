"""
=============================================================================
COMPLETIONS.PY — Completing habits and attributing impact
=============================================================================
The toggle workflow behind POST /api/habits/{id}/toggle:

  look up habit → completion for that day?
      YES → delete it, streak - 1 (never below 0)
      NO  → create it, streak + 1, totalImpactEarned + impactAmount,
            then ask the impact partner to create the impact

Rules:
  - Counters change through single UPDATE expressions (streak = streak + 1),
    never read-modify-write in Python.
  - The completion insert and its counter increments commit together. The
    (habit_id, completed_on) unique constraint catches two toggles racing on
    the same day: the loser rolls back and reports the existing completion.
  - The partner call runs after that commit, outside any open transaction.
    A partner failure never fails the completion: it only turns into
    impact_created=False.
  - Un-completing does NOT give back totalImpactEarned and does not try to
    undo the partner call. Impact already bought stays bought.
"""

import os
import logging
from datetime import date, datetime, time, timedelta
from typing import Optional

import pytz
from sqlalchemy import case, delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from impact import ImpactPartner, ImpactRequest, ImpactResult, SandboxPartner
from models import Habit, HabitCompletion, ImpactAction, User

logger = logging.getLogger("greenstreak.completions")

APP_TIMEZONE = os.getenv("APP_TIMEZONE", "UTC")


class HabitNotFoundError(LookupError):
    """The habit does not exist, was deleted, or belongs to someone else."""


class CompletionNotFoundError(LookupError):
    """The habit has no completion on that day."""


# =============================================================================
# ===================== CALENDAR DAYS =========================================
# =============================================================================
# Timestamps are stored naive, in the application timezone, so a "day" is
# simply [00:00, next 00:00) of that clock.

def now_local() -> datetime:
    return datetime.now(pytz.timezone(APP_TIMEZONE)).replace(tzinfo=None)


def today_local() -> date:
    return now_local().date()


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def completion_timestamp(day: date) -> datetime:
    """Now for today; noon for any other day (backfilled or planned)."""
    if day == today_local():
        return now_local()
    return datetime.combine(day, time(12, 0))


# =============================================================================
# ===================== QUERIES ===============================================
# =============================================================================

def get_owned_habit(db: Session, habit_id: int, user_id: str) -> Habit:
    habit = db.query(Habit).filter(
        Habit.id == habit_id,
        Habit.user_id == user_id,
        Habit.is_active == True
    ).first()
    if habit is None:
        raise HabitNotFoundError(habit_id)
    return habit


def find_completion(db: Session, habit_id: int, user_id: str, day: date) -> Optional[HabitCompletion]:
    start, end = day_bounds(day)
    return db.query(HabitCompletion).filter(
        HabitCompletion.habit_id == habit_id,
        HabitCompletion.user_id == user_id,
        HabitCompletion.completed_at >= start,
        HabitCompletion.completed_at < end
    ).first()


def completions_between(db: Session, user_id: str, start: datetime, end: datetime) -> list[HabitCompletion]:
    """Completions of a user with start <= completed_at < end."""
    return db.query(HabitCompletion).filter(
        HabitCompletion.user_id == user_id,
        HabitCompletion.completed_at >= start,
        HabitCompletion.completed_at < end
    ).all()


# =============================================================================
# ===================== TOGGLE ================================================
# =============================================================================

def toggle_habit_completion(
    db: Session,
    habit_id: int,
    user_id: str,
    day: Optional[date] = None,
    partner: Optional[ImpactPartner] = None,
) -> dict:
    """
    Completes or un-completes a habit for a day.

    Returns:
      {
        "completed": True,
        "streak": 4,
        "impact_created": True,
        "impact_id": "sandbox_1a2b3c",
        "impact_action": "plant_tree",
        "impact_amount": 2,
        "total_impact_earned": 8,
        "message": "Habit completed and impact created!"
      }

    Raises HabitNotFoundError.
    """
    day = day or today_local()
    habit = get_owned_habit(db, habit_id, user_id)

    existing = find_completion(db, habit.id, user_id, day)
    if existing is not None:
        return _uncomplete(db, habit, existing)
    return _complete(db, habit, user_id, day, partner or SandboxPartner())


def _uncomplete(db: Session, habit: Habit, completion: HabitCompletion) -> dict:
    deleted = db.execute(
        delete(HabitCompletion).where(HabitCompletion.id == completion.id)
    ).rowcount

    # Only the request that really removed the row may decrement
    if deleted:
        db.execute(
            update(Habit)
            .where(Habit.id == habit.id)
            .values(streak=case((Habit.streak > 0, Habit.streak - 1), else_=0))
            .execution_options(synchronize_session=False)
        )
    db.commit()
    db.refresh(habit)

    logger.info(f"↩️ Habit {habit.id} un-completed (streak {habit.streak})")
    return _result(habit, completed=False, impact_created=False, message="Habit uncompleted")


def _complete(db: Session, habit: Habit, user_id: str, day: date, partner: ImpactPartner) -> dict:
    completion = HabitCompletion(
        habit_id=habit.id,
        user_id=user_id,
        completed_at=completion_timestamp(day),
        completed_on=day,
        impact_action=habit.impact_action,
        impact_amount=habit.impact_amount,
        streak_at_completion=habit.streak + 1,
    )
    db.add(completion)
    try:
        db.flush()
        db.execute(
            update(Habit)
            .where(Habit.id == habit.id)
            .values(
                streak=Habit.streak + 1,
                total_impact_earned=Habit.total_impact_earned + Habit.impact_amount,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except IntegrityError:
        # Another request completed this habit for the same day first
        db.rollback()
        logger.warning(f"⚠️ Concurrent completion of habit {habit.id} on {day} detected, not counted twice")
        db.refresh(habit)
        winner = find_completion(db, habit.id, user_id, day)
        return _result(
            habit,
            completed=True,
            impact_created=bool(winner and winner.impact_created),
            impact_id=winner.impact_id if winner else None,
            message="Habit already completed for this day",
        )

    db.refresh(habit)
    completion.streak_at_completion = habit.streak

    impact = _create_impact(habit, partner)
    if impact.success:
        completion.impact_created = True
        completion.impact_id = impact.impact_id
        if habit.impact_action == ImpactAction.plant_tree.value:
            _add_trees(db, user_id, habit.impact_amount)
    db.commit()
    db.refresh(habit)

    logger.info(
        f"✅ Habit {habit.id} completed on {day} (streak {habit.streak}, "
        f"impact {'created' if impact.success else 'failed'})"
    )
    return _result(
        habit,
        completed=True,
        impact_created=impact.success,
        impact_id=impact.impact_id if impact.success else None,
        message="Habit completed and impact created!" if impact.success
        else "Habit completed (impact creation failed)",
    )


def _create_impact(habit: Habit, partner: ImpactPartner) -> ImpactResult:
    request = ImpactRequest(action=habit.impact_action, amount=habit.impact_amount)
    description = f"{habit.name} completion - Streak: {habit.streak}"
    try:
        result = partner.create_impact(request, description)
    except Exception as e:
        # Adapters should not raise, but a partner outage must never block a completion
        logger.error(f"❌ Impact partner {partner.name} raised for habit {habit.id}: {e}")
        return ImpactResult(success=False, error=str(e))

    if not result.success:
        logger.warning(f"⚠️ Impact not created for habit {habit.id}: {result.error}")
    return result


def _add_trees(db: Session, user_id: str, amount: int):
    """Tree counter + user streak counters, in one UPDATE."""
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(
            trees_planted=User.trees_planted + amount,
            current_streak=User.current_streak + 1,
            longest_streak=case(
                (User.longest_streak < User.current_streak + 1, User.current_streak + 1),
                else_=User.longest_streak,
            ),
        )
        .execution_options(synchronize_session=False)
    )


def _result(habit: Habit, completed: bool, impact_created: bool, message: str,
            impact_id: Optional[str] = None) -> dict:
    return {
        "completed": completed,
        "streak": habit.streak,
        "impact_created": impact_created,
        "impact_id": impact_id,
        "impact_action": habit.impact_action,
        "impact_amount": habit.impact_amount,
        "total_impact_earned": habit.total_impact_earned,
        "message": message,
    }


# =============================================================================
# ===================== EMOTIONAL FEEDBACK ====================================
# =============================================================================

def record_feedback(db: Session, habit_id: int, user_id: str, rating: int,
                    day: Optional[date] = None) -> HabitCompletion:
    """Stores how the user felt (1-5) on the completion of that day."""
    habit = get_owned_habit(db, habit_id, user_id)
    completion = find_completion(db, habit.id, user_id, day or today_local())
    if completion is None:
        raise CompletionNotFoundError(f"Habit {habit_id} is not completed on that day")

    completion.emotional_feedback = rating
    db.commit()
    db.refresh(completion)
    return completion


def recent_feedback(db: Session, user_id: str, limit: int = 5) -> list[int]:
    """Latest emotional ratings, newest first."""
    rows = db.query(HabitCompletion.emotional_feedback).filter(
        HabitCompletion.user_id == user_id,
        HabitCompletion.emotional_feedback.isnot(None)
    ).order_by(HabitCompletion.completed_at.desc()).limit(limit).all()
    return [r[0] for r in rows]
