from datetime import timedelta

import llm
from auth import create_access_token
from completions import today_local


# ─────────────────────────────────────────────────────────────────────────────
# AUTH
# ─────────────────────────────────────────────────────────────────────────────

def test_health_check(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_requests_without_token_are_rejected(client):
    assert client.get("/api/habits").status_code == 401
    assert client.get("/api/dashboard").status_code == 401


def test_invalid_token_is_rejected(client):
    response = client.get("/api/auth/user", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401


def test_first_request_creates_user_from_claims(client, auth_headers):
    response = client.get("/api/auth/user", headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == "user-1"
    assert body["email"] == "ada@example.com"
    assert body["firstName"] == "Ada"
    assert body["treesPlanted"] == 0
    assert body["onboardingCompleted"] is False


def test_two_subjects_may_share_an_email(client, auth_headers):
    token = create_access_token("user-3", "ada@example.com", first_name="Ada")
    second = {"Authorization": f"Bearer {token}"}

    assert client.get("/api/auth/user", headers=auth_headers).status_code == 200
    assert client.get("/api/auth/user", headers=second).status_code == 200
    assert client.get("/api/auth/user", headers=second).json()["id"] == "user-3"


def test_celebration_prefs_are_saved(client, auth_headers):
    response = client.put(
        "/api/auth/user/celebration-prefs",
        json={"personalityTone": "playful", "style": "hype", "emojiLevel": 3},
        headers=auth_headers,
    )

    assert response.status_code == 200
    prefs = response.json()["celebrationPrefs"]
    assert prefs["personalityTone"] == "playful"
    assert prefs["emojiLevel"] == 3


def test_unknown_celebration_tone_is_rejected(client, auth_headers):
    response = client.put(
        "/api/auth/user/celebration-prefs", json={"personalityTone": "sarcastic"}, headers=auth_headers
    )

    assert response.status_code == 400


# ─────────────────────────────────────────────────────────────────────────────
# HABITS
# ─────────────────────────────────────────────────────────────────────────────

def test_create_habit(create_habit):
    habit = create_habit()

    assert habit["name"] == "Walk"
    assert habit["impactAction"] == "plant_tree"
    assert habit["impactAmount"] == 2
    assert habit["streak"] == 0
    assert habit["totalImpactEarned"] == 0
    assert habit["isActive"] is True


def test_create_habit_rejects_unknown_impact(client, auth_headers):
    response = client.post(
        "/api/habits", json={"name": "Walk", "impactAction": "save_pandas"}, headers=auth_headers
    )

    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "Invalid request data"
    assert body["errors"][0]["loc"][-1] == "impactAction"


def test_create_habit_rejects_zero_amount(client, auth_headers):
    response = client.post(
        "/api/habits", json={"name": "Walk", "impactAmount": 0}, headers=auth_headers
    )

    assert response.status_code == 400


def test_create_habit_requires_name(client, auth_headers):
    response = client.post("/api/habits", json={"name": ""}, headers=auth_headers)

    assert response.status_code == 400


def test_update_habit(client, auth_headers, create_habit):
    habit = create_habit()

    response = client.put(
        f"/api/habits/{habit['id']}",
        json={"name": "Long walk", "impactAction": "sponsor_bees", "impactAmount": 20},
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.json()["name"] == "Long walk"
    assert response.json()["impactAction"] == "sponsor_bees"
    assert response.json()["category"] == "fitness"


def test_update_habit_can_clear_description(client, auth_headers, create_habit):
    habit = create_habit()

    response = client.put(f"/api/habits/{habit['id']}", json={"description": None, "name": None}, headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["description"] is None
    assert response.json()["name"] == "Walk"


def test_habits_are_private(client, other_headers, create_habit):
    habit = create_habit()

    assert client.get("/api/habits", headers=other_headers).json() == []
    assert client.put(f"/api/habits/{habit['id']}", json={"name": "Mine"}, headers=other_headers).status_code == 404
    assert client.delete(f"/api/habits/{habit['id']}", headers=other_headers).status_code == 404
    assert client.post(f"/api/habits/{habit['id']}/toggle", headers=other_headers).status_code == 404


def test_delete_hides_habit_but_keeps_history(client, auth_headers, create_habit):
    habit = create_habit()
    client.post(f"/api/habits/{habit['id']}/toggle", headers=auth_headers)

    response = client.delete(f"/api/habits/{habit['id']}", headers=auth_headers)

    assert response.status_code == 200
    assert client.get("/api/habits", headers=auth_headers).json() == []
    assert client.delete(f"/api/habits/{habit['id']}", headers=auth_headers).status_code == 404
    timeline = client.get("/api/impact-timeline", headers=auth_headers).json()
    assert [entry["habitName"] for entry in timeline] == ["Walk"]


# ─────────────────────────────────────────────────────────────────────────────
# COMPLETIONS
# ─────────────────────────────────────────────────────────────────────────────

def test_toggle_complete_and_undo(client, auth_headers, create_habit, partner):
    habit = create_habit()

    done = client.post(f"/api/habits/{habit['id']}/toggle", headers=auth_headers)
    assert done.status_code == 200
    assert done.json()["completed"] is True
    assert done.json()["streak"] == 1
    assert done.json()["impactCreated"] is True
    assert done.json()["totalImpactEarned"] == 2

    undone = client.post(f"/api/habits/{habit['id']}/toggle", headers=auth_headers)
    assert undone.json()["completed"] is False
    assert undone.json()["streak"] == 0
    assert undone.json()["totalImpactEarned"] == 2
    assert len(partner.calls) == 1


def test_toggle_with_failing_partner(client, auth_headers, create_habit, partner):
    partner.succeed = False
    habit = create_habit()

    response = client.post(f"/api/habits/{habit['id']}/toggle", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["completed"] is True
    assert response.json()["impactCreated"] is False
    assert response.json()["message"] == "Habit completed (impact creation failed)"


def test_toggle_for_another_day(client, auth_headers, create_habit):
    habit = create_habit()
    yesterday = today_local() - timedelta(days=1)

    client.post(f"/api/habits/{habit['id']}/toggle", params={"date": yesterday.isoformat()}, headers=auth_headers)
    today = client.post(f"/api/habits/{habit['id']}/toggle", headers=auth_headers)

    assert today.json()["completed"] is True
    assert today.json()["streak"] == 2
    history = client.get(f"/api/habits/{habit['id']}/history", headers=auth_headers).json()
    assert [entry["completedOn"] for entry in history] == [today_local().isoformat(), yesterday.isoformat()]


def test_toggle_unknown_habit(client, auth_headers):
    assert client.post("/api/habits/999/toggle", headers=auth_headers).status_code == 404


def test_toggle_rejects_malformed_date(client, auth_headers, create_habit):
    habit = create_habit()

    response = client.post(f"/api/habits/{habit['id']}/toggle", params={"date": "yesterday"}, headers=auth_headers)

    assert response.status_code == 400


def test_feedback_on_completed_habit(client, auth_headers, create_habit):
    habit = create_habit()
    client.post(f"/api/habits/{habit['id']}/toggle", headers=auth_headers)

    response = client.post(f"/api/habits/{habit['id']}/feedback", json={"rating": 5}, headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["emotionalFeedback"] == 5


def test_feedback_needs_a_completion(client, auth_headers, create_habit):
    habit = create_habit()

    response = client.post(f"/api/habits/{habit['id']}/feedback", json={"rating": 5}, headers=auth_headers)

    assert response.status_code == 404


def test_feedback_rating_is_bounded(client, auth_headers, create_habit):
    habit = create_habit()

    response = client.post(f"/api/habits/{habit['id']}/feedback", json={"rating": 6}, headers=auth_headers)

    assert response.status_code == 400


def test_celebration_without_llm_uses_template(client, auth_headers, create_habit):
    habit = create_habit(name="Morning Meditation")
    client.post(f"/api/habits/{habit['id']}/toggle", headers=auth_headers)

    response = client.get(f"/api/habits/{habit['id']}/celebration", headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert "Morning Meditation" in body["message"]
    assert "1 day" in body["message"]
    assert body["motivationalNote"]


# ─────────────────────────────────────────────────────────────────────────────
# DASHBOARD AND IMPACT
# ─────────────────────────────────────────────────────────────────────────────

def test_dashboard(client, auth_headers, create_habit):
    walk = create_habit()
    create_habit(name="Read", impactAction="provide_water", impactAmount=5)
    client.post(f"/api/habits/{walk['id']}/toggle", headers=auth_headers)

    response = client.get("/api/dashboard", headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["totalHabits"] == 2
    assert body["todayCompletions"] == 1
    assert {h["name"]: h["completedToday"] for h in body["habits"]} == {"Walk": True, "Read": False}
    assert len(body["weeklyProgress"]) == 7
    assert body["weeklyProgress"][-1]["isToday"] is True
    assert body["weeklyProgress"][-1]["completed"] == 1
    assert body["weeklyProgress"][-1]["total"] == 2
    assert body["weeklyProgress"][0]["completed"] == 0
    assert body["user"]["treesPlanted"] == 2
    assert body["co2Offset"] == 4.4


def test_recent_impact(client, auth_headers, create_habit):
    habit = create_habit()
    client.post(f"/api/habits/{habit['id']}/toggle", headers=auth_headers)

    entries = client.get("/api/recent-impact", headers=auth_headers).json()

    assert len(entries) == 1
    assert entries[0]["habitName"] == "Walk"
    assert entries[0]["impactAction"] == "plant_tree"
    assert entries[0]["impactAmount"] == 2
    assert entries[0]["impactCreated"] is True
    assert entries[0]["streak"] == 1


def test_impact_locations(client, auth_headers, create_habit):
    walk = create_habit()
    water = create_habit(name="Hydrate", impactAction="provide_water", impactAmount=5)
    client.post(f"/api/habits/{walk['id']}/toggle", headers=auth_headers)
    client.post(f"/api/habits/{water['id']}/toggle", headers=auth_headers)

    locations = client.get("/api/impact-locations", headers=auth_headers).json()

    by_type = {location["impactType"]: location for location in locations}
    assert by_type["plant_tree"]["totalAmount"] == 2
    assert by_type["provide_water"]["totalAmount"] == 5
    assert by_type["provide_water"]["country"] == "Ethiopia"
    assert len(by_type["plant_tree"]["coordinates"]) == 2


def test_impact_types_are_public(client):
    types = client.get("/api/impact-types").json()

    assert [t["action"] for t in types] == [
        "plant_tree", "rescue_plastic", "offset_carbon", "plant_kelp", "provide_water", "sponsor_bees"
    ]


def test_analytics(client, auth_headers, create_habit):
    habit = create_habit()
    client.post(f"/api/habits/{habit['id']}/toggle", headers=auth_headers)

    body = client.get("/api/analytics", headers=auth_headers).json()

    assert body["habits"][0]["totalCompletions"] == 1
    assert body["habits"][0]["totalImpactEarned"] == 2
    assert len(body["progressData"]) == 30
    assert body["progressData"][-1]["completions"] == 1
    assert body["progressData"][-1]["impact"] == {"plant_tree": 2}
    assert body["impactSummary"]["plant_tree"] == 2
    assert body["impactSummary"]["sponsor_bees"] == 0


# ─────────────────────────────────────────────────────────────────────────────
# ONBOARDING
# ─────────────────────────────────────────────────────────────────────────────

BEHAVIORS = [
    {
        "name": "Stretch for 2 minutes",
        "whyEffective": "Tiny and easy",
        "abilityScore": 5,
        "trigger": "After I wake up",
        "category": "fitness",
        "icon": "dumbbell",
        "impactAction": "plant_tree",
        "impactAmount": 1,
    },
    {
        "name": "Read one page",
        "whyEffective": "Builds a reading habit",
        "abilityScore": 4,
        "trigger": "After dinner",
        "category": "learning",
        "icon": "book-open",
        "impactAction": "offset_carbon",
        "impactAmount": 2,
    },
]


def test_onboarding_message_without_llm_apologizes(client, auth_headers):
    response = client.post("/api/onboarding/message", json={"message": "I want to sleep better"}, headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["nextPhase"] == "welcome"
    assert body["messageCount"] == 0


def test_onboarding_message_turn(client, auth_headers, monkeypatch):
    monkeypatch.setattr(llm, "complete_json", lambda *args, **kwargs: {
        "message": "Why now?", "nextPhase": "clarify_aspiration", "data": {"aspiration": "sleep better"},
    })

    response = client.post("/api/onboarding/message", json={
        "message": "I want to sleep better",
        "conversationState": {"phase": "welcome", "messageCount": 0, "data": {}},
    }, headers=auth_headers)

    body = response.json()
    assert body["response"] == "Why now?"
    assert body["nextPhase"] == "clarify_aspiration"
    assert body["messageCount"] == 1
    assert body["updatedData"]["aspiration"] == "sleep better"


def test_onboarding_recommends_on_third_message(client, auth_headers):
    response = client.post("/api/onboarding/message", json={
        "message": "I work nights",
        "conversationState": {"phase": "clarify_aspiration", "messageCount": 2, "data": {"aspiration": "rest"}},
    }, headers=auth_headers)

    body = response.json()
    assert body["nextPhase"] == "recommend_behaviors"
    assert len(body["suggestedBehaviors"]) == 3
    assert len({b["impactAction"] for b in body["suggestedBehaviors"]}) == 3


def test_onboarding_complete_automatic(client, auth_headers):
    response = client.post("/api/onboarding/complete", json={
        "onboardingProfile": {
            "aspiration": "feel healthier",
            "selectedBehaviors": BEHAVIORS,
            "habitCreationChoice": "automatic",
        },
        "celebrationPrefs": {"personalityTone": "direct"},
    }, headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["user"]["onboardingCompleted"] is True
    assert body["user"]["onboardingProfile"]["aspiration"] == "feel healthier"
    assert body["user"]["celebrationPrefs"]["personalityTone"] == "direct"
    assert [h["name"] for h in body["habits"]] == ["Stretch for 2 minutes", "Read one page"]
    assert body["habits"][1]["description"] == "Builds a reading habit Trigger: After dinner"
    assert len(client.get("/api/habits", headers=auth_headers).json()) == 2


def test_onboarding_complete_manual_creates_nothing(client, auth_headers):
    response = client.post("/api/onboarding/complete", json={
        "onboardingProfile": {"selectedBehaviors": BEHAVIORS, "habitCreationChoice": "manual"},
    }, headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["habits"] == []
    assert response.json()["user"]["onboardingCompleted"] is True
    assert client.get("/api/habits", headers=auth_headers).json() == []


def test_onboarding_rejects_more_than_three_behaviors(client, auth_headers):
    response = client.post("/api/onboarding/complete", json={
        "onboardingProfile": {"selectedBehaviors": BEHAVIORS * 2, "habitCreationChoice": "automatic"},
    }, headers=auth_headers)

    assert response.status_code == 400
