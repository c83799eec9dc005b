# tests/test_api.py

from app.date_utils import local_today
from auth.jwt_handler import create_access_token


def _register(client, **overrides):
    payload = {
        "email": "anna@example.com",
        "password": "s3cret-pass",
        "name": "Anna",
        "role": "PARENT",
        "family_name": "Lindqvist",
    }
    payload.update(overrides)
    return client.post("/api/auth/register", json=payload)


def _login(client, email, password="s3cret-pass"):
    response = client.post("/api/auth/token", data={"username": email, "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["data"]["services"]["database"] is True


def test_register_login_and_full_task_round_trip(client, fake_sms):
    response = _register(client)
    assert response.status_code == 201
    family_code = response.json()["data"]["family"]["family_code"]

    response = _register(client, email="leo@example.com", name="Leo", role="CHILD",
                         family_name=None, family_code=family_code)
    assert response.status_code == 201
    leo_id = response.json()["data"]["user"]["id"]

    parent = _login(client, "anna@example.com")
    child = _login(client, "leo@example.com")

    me = client.get("/api/auth/me", headers=child).json()["data"]
    assert me["family_role"] == "CHILD"

    response = client.post("/api/user/sms-settings", headers=child,
                           json={"enabled": True, "phone_number": "+15557654321"})
    assert response.status_code == 200

    response = client.post("/api/tasks", headers=parent, json={
        "title": "Empty the dishwasher",
        "points": 10,
        "due_date": local_today().isoformat(),
        "assigned_to": leo_id,
    })
    assert response.status_code == 201
    task = response.json()["data"]
    assert task["status"] == "PENDING"
    assert task["assignee"]["name"] == "Leo"

    # The assignment SMS went out after the request committed
    assert [sms.to for sms in fake_sms.sent] == ["+15557654321"]

    response = client.post(f"/api/tasks/{task['id']}/complete", headers=child)
    assert response.json()["data"]["status"] == "COMPLETED"

    response = client.post(f"/api/tasks/{task['id']}/verify", headers=parent)
    assert response.status_code == 200
    assert response.json()["data"]["points_awarded"] == 10

    assert client.get("/api/user/points", headers=child).json()["data"]["points"] == 10
    history = client.get("/api/points/history", headers=child).json()["data"]
    assert history["current_balance"] == 10
    assert history["history"][0]["reason"] == "Task completed: Empty the dishwasher"

    unread = client.get("/api/notifications/unread-count", headers=child).json()["data"]
    assert unread["unread_count"] == 3  # assigned, verified, points earned


def test_login_with_wrong_password_is_unauthorized(client):
    _register(client)

    response = client.post("/api/auth/token", data={"username": "anna@example.com", "password": "wrong-pass"})

    assert response.status_code == 401
    assert response.json() == {"success": False, "error": {"code": "UNAUTHORIZED", "message": "Invalid credentials"}}


def test_duplicate_registration_conflicts(client):
    _register(client)

    response = _register(client)

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "CONFLICT"


def test_missing_token_is_unauthorized(client):
    response = client.get("/api/tasks")

    assert response.status_code == 401
    assert response.json()["success"] is False
    assert response.json()["error"]["code"] == "UNAUTHORIZED"


def test_child_cannot_create_tasks(client, family, auth_headers):
    response = client.post("/api/tasks", headers=auth_headers(family.erik), json={
        "title": "Free candy", "points": 100, "due_date": "2025-03-12", "assigned_to": family.erik.id,
    })

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"


def test_invalid_task_body_is_validation_error(client, family, auth_headers):
    response = client.post("/api/tasks", headers=auth_headers(family.mom), json={
        "title": "Wash car", "points": 5, "due_date": "2025-03-12",
        "is_bonus_task": True, "assigned_to": family.erik.id,
    })

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    response = client.post("/api/tasks", headers=auth_headers(family.mom), json={
        "title": "x" * 101, "points": 5, "due_date": "2025-03-12", "assigned_to": family.erik.id,
    })
    assert response.status_code == 400


def test_ineligible_transition_is_not_found(client, family, auth_headers):
    response = client.post("/api/tasks/4242/verify", headers=auth_headers(family.mom))

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


def test_bonus_claim_race_over_http(client, family, auth_headers):
    response = client.post("/api/tasks", headers=auth_headers(family.dad), json={
        "title": "Rake leaves", "points": 15, "due_date": "2025-03-12", "is_bonus_task": True,
    })
    task_id = response.json()["data"]["id"]

    first = client.post(f"/api/tasks/{task_id}/assign", headers=auth_headers(family.sasha))
    second = client.post(f"/api/tasks/{task_id}/assign", headers=auth_headers(family.erik))

    assert first.status_code == 200
    assert first.json()["data"]["assigned_to"] == family.sasha.id
    assert second.status_code == 404


def test_deduct_more_than_balance(client, family, auth_headers):
    headers = auth_headers(family.mom)
    client.post("/api/points/add", headers=headers, json={"user_id": family.sasha.id, "points": 5, "reason": "Help"})

    response = client.post("/api/points/deduct", headers=headers,
                           json={"user_id": family.sasha.id, "points": 6, "reason": "Toy"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INSUFFICIENT_POINTS"


def test_tags_crud(client, family, auth_headers):
    headers = auth_headers(family.mom)

    response = client.post("/api/tags", headers=headers, json={"name": "Kitchen", "color": "#FF8800"})
    assert response.status_code == 201
    tag_id = response.json()["data"]["id"]

    assert client.post("/api/tags", headers=headers, json={"name": "Kitchen"}).status_code == 409
    assert client.post("/api/tags", headers=headers, json={"name": "Yard", "color": "orange"}).status_code == 400

    response = client.put(f"/api/tags/{tag_id}", headers=headers, json={"color": "#00AA00"})
    assert response.json()["data"]["color"] == "#00AA00"

    assert client.delete(f"/api/tags/{tag_id}", headers=headers).status_code == 200
    assert client.get("/api/tags", headers=headers).json()["data"] == []


def test_regenerate_family_code_is_admin_only(client, family, auth_headers):
    assert client.post("/api/families/regenerate", headers=auth_headers(family.dad)).status_code == 403

    response = client.post("/api/families/regenerate", headers=auth_headers(family.mom))

    assert response.status_code == 200
    assert response.json()["data"]["family_code"] != "ABCD1234"


def test_ai_parse_tasks_endpoint(client, family, auth_headers, chat_model):
    chat_model.replies = [
        '{"parsed_tasks": [{"title": "Do homework", "assigned_to": "Erik", "due_date": "2025-03-13",'
        ' "points": 3, "is_recurring": true, "recurrence_pattern": "DAILY"}], "clarification_questions": []}'
    ]

    response = client.post("/api/ai/parse-tasks", headers=auth_headers(family.mom),
                           json={"input": "Erik needs to do homework every day"})

    assert response.status_code == 200
    [draft] = response.json()["data"]["parsed_tasks"]
    assert draft["assigned_to"] == family.erik.id
    assert draft["recurrence_pattern"] == "DAILY"

    response = client.post("/api/ai/parse-tasks", headers=auth_headers(family.erik),
                           json={"input": "Give me a bonus"})
    assert response.status_code == 403


def test_register_rejects_unknown_timezone(client):
    response = _register(client, timezone="../x")

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"
    assert _register(client, timezone="Europe/Stockholm").status_code == 201


def test_token_with_non_numeric_subject_is_unauthorized(client):
    token = create_access_token({"sub": "anna@example.com"})

    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"


def test_ai_chat_endpoint(client, family, auth_headers, chat_model):
    chat_model.replies = ['{"intent": "QUERY_TASKS", "confidence": 0.9}']

    response = client.post("/api/ai/chat", headers=auth_headers(family.dad), json={
        "message": "What is pending?",
        "history": [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "Hello!"}],
    })

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["intent"] == "QUERY_TASKS"
    assert data["data"]["quick_stats"]["total_active_tasks"] == 0

    response = client.post("/api/ai/chat", headers=auth_headers(family.sasha), json={"message": "hi"})
    assert response.status_code == 403
    response = client.post("/api/ai/chat", headers=auth_headers(family.mom), json={"message": ""})
    assert response.status_code == 400
