"""
=============================================================================
MAIN.PY — The GreenStreak API
=============================================================================
Every REST endpoint lives here.

Sections:
  1. AUTH        → current user, celebration preferences
  2. DASHBOARD   → today's view + weekly progress
  3. HABITS      → CRUD
  4. COMPLETIONS → toggle, emotional feedback, history, celebration
  5. IMPACT      → recent impact, timeline, map, impact types, analytics
  6. ONBOARDING  → AI conversation and completion

All routes live under /api and speak camelCase JSON.
"""

import os
import math
import logging
import traceback
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from typing import Optional

from fastapi import FastAPI, Depends, HTTPException, status, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import func
from sqlalchemy.orm import Session

from auth import get_current_user
from celebration import build_context, generate_celebration
from completions import (
    CompletionNotFoundError, HabitNotFoundError, completions_between, day_bounds,
    get_owned_habit, record_feedback, today_local, toggle_habit_completion
)
from database import get_db, init_db
from impact import IMPACT_TYPES, ImpactPartner, get_impact_partner
from models import Habit, HabitCompletion, ImpactAction, User
from onboarding import complete_onboarding, process_message
from schemas import (
    AnalyticsResponse, CelebrationMessage, CelebrationPrefs, CompletionResponse,
    DailyImpact, DashboardHabit, DashboardResponse, DayProgress, FeedbackCreate,
    HabitAnalytics, HabitCreate, HabitResponse, HabitUpdate, ImpactEntry,
    ImpactLocation, OnboardingCompleteRequest, OnboardingCompleteResponse,
    OnboardingMessageRequest, OnboardingMessageResponse, ToggleResponse,
    UserResponse
)

# ─────────────────────────────────────────────────────────────────────────────
# LOGGING
# ─────────────────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s"
)
logger = logging.getLogger("greenstreak.api")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

TREES_TO_CO2_KG = 2.2
MONTHLY_TREES_RATIO = 0.1
ANALYTICS_DAYS = 30
NULLABLE_HABIT_FIELDS = {"description"}


# ─────────────────────────────────────────────────────────────────────────────
# LIFESPAN
# ─────────────────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Creates missing tables on startup."""
    logger.info("🚀 Starting GreenStreak...")
    init_db()
    logger.info("✅ Database ready")

    yield

    logger.info("👋 GreenStreak stopped")


# ─────────────────────────────────────────────────────────────────────────────
# FASTAPI APPLICATION
# ─────────────────────────────────────────────────────────────────────────────

app = FastAPI(
    title="GreenStreak API",
    description="Habit tracking where every completion creates real environmental impact",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─────────────────────────────────────────────────────────────────────────────
# ERROR HANDLERS
# ─────────────────────────────────────────────────────────────────────────────

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed payloads → 400 with one entry per offending field"""
    errors = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": "Invalid request data", "errors": errors}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Anything unhandled (database down included) → generic 500"""
    logger.error(f"❌ Unhandled error on {request.url}: {exc}\n{traceback.format_exc()}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "type": type(exc).__name__,
            "path": str(request.url.path)
        }
    )


def _habit_or_404(db: Session, habit_id: int, user: User) -> Habit:
    try:
        return get_owned_habit(db, habit_id, user.id)
    except HabitNotFoundError:
        raise HTTPException(status_code=404, detail="Habit not found")


# =============================================================================
# ===================== HEALTH CHECK ==========================================
# =============================================================================

@app.get("/", tags=["Health"])
def health_check():
    return {
        "status": "ok",
        "app": "GreenStreak",
        "version": "1.0.0",
        "timestamp": datetime.utcnow().isoformat()
    }


# =============================================================================
# ===================== SECTION 1: AUTH =======================================
# =============================================================================

@app.get("/api/auth/user", response_model=UserResponse, tags=["Auth"])
def get_auth_user(user: User = Depends(get_current_user)):
    """The authenticated user (created on first login)"""
    return user


@app.put("/api/auth/user/celebration-prefs", response_model=UserResponse, tags=["Auth"])
def update_celebration_prefs(
    data: CelebrationPrefs,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    user.celebration_prefs = data.model_dump(mode="json", by_alias=True)
    db.commit()
    db.refresh(user)
    return user


# =============================================================================
# ===================== SECTION 2: DASHBOARD ==================================
# =============================================================================

@app.get("/api/dashboard", response_model=DashboardResponse, tags=["Dashboard"])
def get_dashboard(
    day: Optional[date] = Query(default=None, alias="date"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Everything the home screen needs for one day:
      - active habits, each flagged with completedToday
      - how many were completed that day
      - the 7 days ending that day (completed / total)
    """
    day = day or today_local()
    habits = _active_habits(db, user)

    day_start, day_end = day_bounds(day)
    day_completions = completions_between(db, user.id, day_start, day_end)
    completed_ids = {c.habit_id for c in day_completions}

    week_start, _ = day_bounds(day - timedelta(days=6))
    week_completions = completions_between(db, user.id, week_start, day_end)
    per_day = defaultdict(int)
    for c in week_completions:
        per_day[c.completed_at.date()] += 1

    weekly_progress = []
    for offset in range(6, -1, -1):
        current = day - timedelta(days=offset)
        weekly_progress.append(DayProgress(
            day=current.strftime("%a"),
            date=current,
            completed=per_day[current],
            total=len(habits),
            is_today=offset == 0
        ))

    return DashboardResponse(
        user=UserResponse.model_validate(user),
        habits=[
            DashboardHabit(**HabitResponse.model_validate(h).model_dump(), completed_today=h.id in completed_ids)
            for h in habits
        ],
        today_completions=len(day_completions),
        total_habits=len(habits),
        weekly_progress=weekly_progress,
        monthly_trees=math.floor(user.trees_planted * MONTHLY_TREES_RATIO),
        co2_offset=round(user.trees_planted * TREES_TO_CO2_KG, 1),
    )


def _active_habits(db: Session, user: User) -> list[Habit]:
    return db.query(Habit).filter(
        Habit.user_id == user.id, Habit.is_active == True
    ).order_by(Habit.created_at, Habit.id).all()


# =============================================================================
# ===================== SECTION 3: HABITS =====================================
# =============================================================================

@app.get("/api/habits", response_model=list[HabitResponse], tags=["Habits"])
def list_habits(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _active_habits(db, user)


@app.post("/api/habits", response_model=HabitResponse, status_code=status.HTTP_201_CREATED, tags=["Habits"])
def create_habit(data: HabitCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Creates a habit and the impact it will buy on every completion"""
    habit = Habit(user_id=user.id, **data.model_dump(mode="json"))
    db.add(habit)
    db.commit()
    db.refresh(habit)

    logger.info(f"➕ Habit created: {habit.name} ({habit.impact_amount} {habit.impact_action}, user {user.id})")
    return habit


@app.put("/api/habits/{habit_id}", response_model=HabitResponse, tags=["Habits"])
def update_habit(
    habit_id: int, data: HabitUpdate,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    """Edits a habit. Past completions keep the impact they were made with."""
    habit = _habit_or_404(db, habit_id, user)

    for key, value in data.model_dump(mode="json", exclude_unset=True).items():
        # description is the only column that may be cleared with null
        if value is not None or key in NULLABLE_HABIT_FIELDS:
            setattr(habit, key, value)

    db.commit()
    db.refresh(habit)
    return habit


@app.delete("/api/habits/{habit_id}", tags=["Habits"])
def delete_habit(habit_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Hides the habit. Its completions stay in the impact timeline."""
    habit = _habit_or_404(db, habit_id, user)
    habit.is_active = False
    db.commit()

    logger.info(f"🗑️ Habit deleted: {habit.name} (user {user.id})")
    return {"message": "Habit deleted successfully"}


# =============================================================================
# ===================== SECTION 4: COMPLETIONS ================================
# =============================================================================

@app.post("/api/habits/{habit_id}/toggle", response_model=ToggleResponse, tags=["Completions"])
def toggle_habit(
    habit_id: int,
    day: Optional[date] = Query(default=None, alias="date"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    partner: ImpactPartner = Depends(get_impact_partner)
):
    """
    Completes the habit for the day, or un-completes it if already done.
    Completing also asks the impact partner to create the impact; if the
    partner fails the habit is still completed (impactCreated=false).
    """
    try:
        result = toggle_habit_completion(db, habit_id, user.id, day, partner)
    except HabitNotFoundError:
        raise HTTPException(status_code=404, detail="Habit not found")
    return ToggleResponse(**result)


@app.post("/api/habits/{habit_id}/feedback", response_model=CompletionResponse, tags=["Completions"])
def give_feedback(
    habit_id: int, data: FeedbackCreate,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    """How did it feel? (1-5), stored on that day's completion"""
    try:
        return record_feedback(db, habit_id, user.id, data.rating, data.day)
    except HabitNotFoundError:
        raise HTTPException(status_code=404, detail="Habit not found")
    except CompletionNotFoundError:
        raise HTTPException(status_code=404, detail="Habit is not completed on that day")


@app.get("/api/habits/{habit_id}/history", response_model=list[CompletionResponse], tags=["Completions"])
def get_habit_history(habit_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    habit = _habit_or_404(db, habit_id, user)
    return db.query(HabitCompletion).filter(
        HabitCompletion.habit_id == habit.id
    ).order_by(HabitCompletion.completed_at.desc()).all()


@app.get("/api/habits/{habit_id}/celebration", response_model=CelebrationMessage, tags=["Completions"])
def get_celebration(habit_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """AI celebration message for the habit just completed. Never fails."""
    habit = _habit_or_404(db, habit_id, user)
    return generate_celebration(build_context(db, user, habit))


# =============================================================================
# ===================== SECTION 5: IMPACT =====================================
# =============================================================================

@app.get("/api/recent-impact", response_model=list[ImpactEntry], tags=["Impact"])
def get_recent_impact(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """The last 10 completions and what they created"""
    return _impact_entries(db, user, limit=10)


@app.get("/api/impact-timeline", response_model=list[ImpactEntry], tags=["Impact"])
def get_impact_timeline(
    limit: int = Query(default=100, ge=1, le=500),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return _impact_entries(db, user, limit=limit)


def _impact_entries(db: Session, user: User, limit: int) -> list[ImpactEntry]:
    rows = db.query(HabitCompletion, Habit.name).join(
        Habit, Habit.id == HabitCompletion.habit_id
    ).filter(
        HabitCompletion.user_id == user.id
    ).order_by(HabitCompletion.completed_at.desc()).limit(limit).all()

    return [
        ImpactEntry(
            id=c.id,
            habit_id=c.habit_id,
            habit_name=name,
            impact_action=c.impact_action,
            impact_amount=c.impact_amount,
            impact_created=c.impact_created,
            impact_id=c.impact_id,
            completed_at=c.completed_at,
            streak=c.streak_at_completion,
        )
        for c, name in rows
    ]


@app.get("/api/impact-locations", response_model=list[ImpactLocation], tags=["Impact"])
def get_impact_locations(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Impact per action, pinned on the project it funds (for the map)"""
    rows = db.query(
        HabitCompletion.impact_action,
        func.sum(HabitCompletion.impact_amount),
        func.count(HabitCompletion.id)
    ).filter(
        HabitCompletion.user_id == user.id
    ).group_by(HabitCompletion.impact_action).all()

    locations = []
    for action, total, count in rows:
        info = IMPACT_TYPES.get(action)
        if info is None:
            continue
        locations.append(ImpactLocation(
            id=action,
            country=info["country"],
            region=info["region"],
            coordinates=info["coordinates"],
            impact_type=action,
            total_amount=int(total or 0),
            project_name=info["project_name"],
            project_description=info["project_description"],
            completion_count=count,
        ))
    return locations


@app.get("/api/impact-types", tags=["Impact"])
def get_impact_types():
    return [
        {
            "action": action,
            "name": info["name"],
            "unit": info["unit"],
            "description": info["description"],
            "emoji": info["emoji"],
        }
        for action, info in IMPACT_TYPES.items()
    ]


@app.get("/api/analytics", response_model=AnalyticsResponse, tags=["Impact"])
def get_analytics(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """
    Per-habit totals, the last 30 days of completions/impact and the overall
    impact per action.
    """
    habits = _active_habits(db, user)
    counts = dict(db.query(
        HabitCompletion.habit_id, func.count(HabitCompletion.id)
    ).filter(
        HabitCompletion.user_id == user.id
    ).group_by(HabitCompletion.habit_id).all())

    today = today_local()
    first_day = today - timedelta(days=ANALYTICS_DAYS - 1)
    start, _ = day_bounds(first_day)
    _, end = day_bounds(today)

    daily = {
        first_day + timedelta(days=i): {"completions": 0, "impact": defaultdict(int)}
        for i in range(ANALYTICS_DAYS)
    }
    for c in completions_between(db, user.id, start, end):
        bucket = daily.get(c.completed_at.date())
        if bucket is not None:
            bucket["completions"] += 1
            bucket["impact"][c.impact_action] += c.impact_amount

    summary = {action.value: 0 for action in ImpactAction}
    for action, total in db.query(
        HabitCompletion.impact_action, func.sum(HabitCompletion.impact_amount)
    ).filter(
        HabitCompletion.user_id == user.id
    ).group_by(HabitCompletion.impact_action).all():
        summary[action] = int(total or 0)

    return AnalyticsResponse(
        habits=[
            HabitAnalytics(
                id=h.id,
                name=h.name,
                category=h.category,
                streak=h.streak,
                total_completions=counts.get(h.id, 0),
                impact_action=h.impact_action,
                impact_amount=h.impact_amount,
                total_impact_earned=h.total_impact_earned,
            )
            for h in habits
        ],
        progress_data=[
            DailyImpact(date=d, completions=b["completions"], impact=dict(b["impact"]))
            for d, b in daily.items()
        ],
        impact_summary=summary,
    )


# =============================================================================
# ===================== SECTION 6: ONBOARDING =================================
# =============================================================================

@app.post("/api/onboarding/message", response_model=OnboardingMessageResponse, tags=["Onboarding"])
def onboarding_message(data: OnboardingMessageRequest, user: User = Depends(get_current_user)):
    """
    One turn of the coaching conversation. The client keeps the
    conversationState and sends it back with every message.
    """
    return process_message(data.message, data.conversation_state)


@app.post("/api/onboarding/complete", response_model=OnboardingCompleteResponse, tags=["Onboarding"])
def onboarding_complete(
    data: OnboardingCompleteRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    habits = complete_onboarding(db, user, data.onboarding_profile, data.celebration_prefs)
    return OnboardingCompleteResponse(
        success=True,
        user=UserResponse.model_validate(user),
        habits=[HabitResponse.model_validate(h) for h in habits],
    )
