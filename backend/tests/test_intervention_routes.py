from auth import get_password_hash
from enums import ThreadType
from error_handlers import ValidationError, ValidationErrorHandler


def _create(client, tenant, lot):
    response = client.login_as(tenant).post("/api/interventions/", json={
        "title": "Radiateur froid",
        "description": "Le radiateur de la chambre ne chauffe plus",
        "type": "chauffage",
        "urgency": "normale",
        "lot_id": lot.id,
    })
    assert response.status_code == 200
    return response.json()["data"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_create_returns_action_result(client, tenant, lot):
    data = _create(client, tenant, lot)

    assert data["status"] == "demande"
    assert data["reference"].startswith("INT-")
    assert data["lot_id"] == lot.id


def test_request_validation_error_shape(client, tenant, lot):
    response = client.login_as(tenant).post("/api/interventions/", json={
        "title": "",
        "description": "Sans titre",
        "lot_id": lot.id,
    })

    body = response.json()
    assert response.status_code == 422
    assert body["success"] is False
    assert body["error_code"] == "VALIDATION_ERROR"
    assert body["details"]["error_count"] >= 1


def test_approve_then_approve_again(client, tenant, manager, lot):
    intervention_id = _create(client, tenant, lot)["id"]
    api = client.login_as(manager)

    first = api.post(f"/api/interventions/{intervention_id}/approve", json={"comment": "Validé"})
    assert first.status_code == 200
    assert first.json() == {
        "success": True,
        "data": first.json()["data"],
        "error": None,
    }
    assert first.json()["data"]["status"] == "approuvee"

    second = api.post(f"/api/interventions/{intervention_id}/approve")
    body = second.json()
    assert second.status_code == 409
    assert body["success"] is False
    assert body["error_code"] == "INVALID_TRANSITION"
    assert body["details"]["current_status"] == "approuvee"

    current = api.get(f"/api/interventions/{intervention_id}").json()["data"]
    assert current["status"] == "approuvee"


def test_tenant_cannot_approve(client, tenant, lot):
    intervention_id = _create(client, tenant, lot)["id"]

    response = client.login_as(tenant).post(f"/api/interventions/{intervention_id}/approve")

    assert response.status_code == 403
    assert response.json()["error_code"] == "PERMISSION_DENIED"


def test_reject_without_reason(client, tenant, manager, lot):
    intervention_id = _create(client, tenant, lot)["id"]

    response = client.login_as(manager).post(f"/api/interventions/{intervention_id}/reject")

    assert response.status_code == 422
    assert response.json()["error_code"] == "VALIDATION_ERROR"
    assert response.json()["details"] == {"field": "reason"}


def test_update_with_null_title_is_rejected(client, tenant, manager, lot):
    intervention_id = _create(client, tenant, lot)["id"]
    api = client.login_as(manager)

    response = api.put(f"/api/interventions/{intervention_id}", json={"title": None, "description": None})

    body = response.json()
    assert response.status_code == 422
    assert body["error_code"] == "VALIDATION_ERROR"
    assert {e["field"] for e in body["details"]["validation_errors"]} == {"title", "description"}
    assert api.get(f"/api/interventions/{intervention_id}").json()["data"]["title"] == "Radiateur froid"


def test_validation_errors_use_422():
    assert ValidationError("Champ invalide").status_code == 422
    assert ValidationErrorHandler.handle_validation_error([]).status_code == 422


def test_unknown_intervention(client, manager):
    response = client.login_as(manager).get("/api/interventions/9999")
    assert response.status_code == 404
    assert response.json()["error_code"] == "RESOURCE_NOT_FOUND"


def test_other_team_gets_not_found(client, tenant, outsider, lot):
    intervention_id = _create(client, tenant, lot)["id"]
    response = client.login_as(outsider).get(f"/api/interventions/{intervention_id}")
    assert response.status_code == 404


def test_slot_negotiation_over_http(client, db_session, planning_intervention, tenant, provider, slot_input):
    slot = slot_input(3)
    proposed = client.login_as(provider).post(
        f"/api/interventions/{planning_intervention.id}/time-slots",
        json={"slots": [{
            "slot_date": slot.slot_date.isoformat(),
            "start_time": "09:00:00",
            "end_time": "11:00:00",
        }]}
    )
    assert proposed.status_code == 200
    slot_id = proposed.json()["data"][0]["id"]

    response = client.login_as(tenant).post(
        f"/api/interventions/time-slots/{slot_id}/respond", json={"response": "accepted"}
    )

    data = response.json()["data"]
    assert response.status_code == 200
    assert data["auto_confirmed"] is True
    assert data["intervention_status"] == "planifiee"
    assert data["slot"]["status"] == "accepted"
    assert data["scheduled_date"].startswith(f"{slot.slot_date.isoformat()}T09:00")


def test_view_hides_providers_from_tenant(client, planning_intervention, tenant, manager):
    view = client.login_as(tenant).get(f"/api/interventions/{planning_intervention.id}/view").json()["data"]

    assert "provider" not in view["participants"]
    assert view["allowed_actions"] == ["accept_slot", "reject_slot"]
    assert set(view["visible_thread_types"]) == {"group", "tenant_to_managers"}

    manager_view = client.login_as(manager).get(f"/api/interventions/{planning_intervention.id}/view").json()["data"]
    assert set(manager_view["participants"]) == {"manager", "provider", "tenant"}
    assert len(manager_view["participants"]["provider"]) == 1


def test_dashboard_is_manager_only(client, tenant, manager, lot):
    _create(client, tenant, lot)

    assert client.login_as(tenant).get("/api/interventions/dashboard").status_code == 403

    stats = client.login_as(manager).get("/api/interventions/dashboard").json()["data"]
    assert stats["total"] == 1
    assert stats["by_status"] == {"demande": 1}


def test_conversation_routes(client, planning_intervention, tenant, provider):
    threads = client.login_as(tenant).get(
        f"/api/conversations/interventions/{planning_intervention.id}/threads"
    ).json()["data"]
    assert {t["thread_type"] for t in threads} == {"group", "tenant_to_managers"}

    group_id = next(t["id"] for t in threads if t["thread_type"] == "group")
    posted = client.post(f"/api/conversations/threads/{group_id}/messages", json={"content": "Bonjour"})
    assert posted.status_code == 200

    provider_thread = next(
        t for t in planning_intervention.threads if t.thread_type == ThreadType.provider_to_managers
    )
    denied = client.get(f"/api/conversations/threads/{provider_thread.id}/messages")
    assert denied.status_code == 403
    assert denied.json()["error_code"] == "PERMISSION_DENIED"

    messages = client.login_as(provider).get(f"/api/conversations/threads/{group_id}/messages").json()["data"]
    assert [m["content"] for m in messages] == ["Bonjour"]


def test_notifications(client, tenant, manager, lot):
    _create(client, tenant, lot)

    api = client.login_as(manager)
    data = api.get("/api/notifications/").json()["data"]
    assert data["unread_count"] == 1

    marked = api.post("/api/notifications/read", json={"mark_all": True}).json()["data"]
    assert marked["updated_count"] == 1
    assert api.get("/api/notifications/").json()["data"]["unread_count"] == 0


def test_login(client, db_session, manager):
    manager.hashed_password = get_password_hash("motdepasse")
    db_session.commit()

    response = client.post("/auth/login", data={"username": manager.email, "password": "motdepasse"})
    assert response.status_code == 200
    assert response.json()["token_type"] == "bearer"
    assert response.json()["user"]["role"] == "gestionnaire"

    failed = client.post("/auth/login", data={"username": manager.email, "password": "mauvais"})
    assert failed.status_code == 401
    assert failed.json()["error_code"] == "UNAUTHORIZED"
