"""
End to end tests through the HTTP API, running the full app against a SQLite db.

Covers the error body shape, permission enforcement per endpoint and the JSON shape of the larger responses.
"""

from datetime import datetime, time, timedelta, timezone

import pytest

from taskhub_api.security import utc_now
from tests.helpers.api_setup import FIRST_ADMIN_PASSWORD, FIRST_ADMIN_USERNAME, login, make_user

pytestmark = pytest.mark.anyio


def _task_payload(project_id: int, title: str = "Write report", **kwargs) -> dict:
    return {"project_id": project_id, "title": title, "estimated_minutes": 60, "estimated_intensity": 3, **kwargs}


@pytest.fixture
async def users(app_db):
    """owner creates projects, editor gets EDITOR on them, stranger has no access. Returns their ids by username."""
    return {username: (await make_user(app_db, username)).id for username in ("owner", "editor", "stranger")}


@pytest.fixture
async def private_project(client, users) -> int:
    """A private project owned by 'owner', with 'editor' granted EDITOR. The client is left logged out."""
    await login(client, "owner")
    response = await client.post("/api/projects", json={"name": "Secret", "is_public": False})
    assert response.status_code == 201, response.text
    project_id = response.json()["id"]

    response = await client.post(
        f"/api/projects/{project_id}/users", json={"username": "editor", "permission_level": "editor"}
    )
    assert response.status_code == 201, response.text

    client.cookies.clear()
    return project_id


async def test_health(client):
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": True}


async def test_responses_are_not_cacheable(client):
    for response in (await client.get("/api/health"), await client.get("/api/projects/9999")):
        assert "no-store" in response.headers["cache-control"]
        assert response.headers["pragma"] == "no-cache"
        assert response.headers["expires"] == "0"


async def test_request_validation_errors_are_400_with_error_body(client, private_project):
    await login(client, "editor")

    response = await client.post("/api/tasks", json=_task_payload(private_project, estimated_intensity=9))

    assert response.status_code == 400
    body = response.json()
    assert set(body) == {"error", "type"}
    assert body["type"] == "validation_error"
    assert body["error"].startswith("estimated_intensity")


async def test_creating_projects_needs_login(client):
    response = await client.post("/api/projects", json={"name": "Nope"})
    assert response.status_code == 401
    assert response.json() == {"error": "Authentication required", "type": "authentication_error"}


async def test_private_project_is_404_for_anonymous_and_403_for_strangers(client, private_project):
    response = await client.get(f"/api/projects/{private_project}")
    assert response.status_code == 404
    assert response.json()["type"] == "not_found_error"

    await login(client, "stranger")
    response = await client.get(f"/api/projects/{private_project}")
    assert response.status_code == 403
    assert response.json()["type"] == "authorization_error"

    await login(client, "editor")
    response = await client.get(f"/api/projects/{private_project}")
    assert response.status_code == 200
    assert response.json()["name"] == "Secret"


async def test_project_listing_shows_user_permission(client, private_project):
    await login(client, "owner")
    response = await client.get("/api/projects")
    assert [(p["name"], p["user_permission"]) for p in response.json()] == [("Secret", "project_admin")]

    await login(client, "editor")
    response = await client.get("/api/projects")
    assert [(p["name"], p["user_permission"]) for p in response.json()] == [("Secret", "editor")]

    client.cookies.clear()
    response = await client.get("/api/projects")
    assert response.json() == []


async def test_editor_can_complete_tasks_but_not_manage_access(client, private_project):
    await login(client, "editor")

    response = await client.post("/api/tasks", json=_task_payload(private_project))
    assert response.status_code == 201
    task_id = response.json()["id"]

    response = await client.post(f"/api/tasks/{task_id}/complete", json={"actual_intensity": 7})
    assert response.status_code == 400
    assert response.json()["type"] == "validation_error"

    response = await client.post(f"/api/tasks/{task_id}/complete", json={"actual_intensity": 3, "actual_minutes": 90})
    assert response.status_code == 200
    body = response.json()
    assert body["task"]["status"] == "done"
    assert body["time_accuracy"] == 50
    assert body["intensity_match"] is True

    response = await client.post(f"/api/tasks/{task_id}/complete", json={"actual_intensity": 3})
    assert response.status_code == 409
    assert response.json()["type"] == "conflict_error"

    response = await client.post(
        f"/api/projects/{private_project}/users", json={"username": "stranger", "permission_level": "view_only"}
    )
    assert response.status_code == 403

    response = await client.delete(f"/api/projects/{private_project}")
    assert response.status_code == 403


async def test_viewer_cannot_create_tasks(client, users, private_project):
    await login(client, "owner")
    response = await client.put(
        f"/api/projects/{private_project}/users/{users['stranger']}", json={"permission_level": "view_only"}
    )
    assert response.status_code == 200

    await login(client, "stranger")
    response = await client.get(f"/api/tasks?project_id={private_project}")
    assert response.status_code == 200

    response = await client.post("/api/tasks", json=_task_payload(private_project))
    assert response.status_code == 403


async def test_grant_management(client, private_project):
    await login(client, "owner")

    response = await client.post(
        f"/api/projects/{private_project}/users", json={"username": "editor", "permission_level": "view_only"}
    )
    assert response.status_code == 409

    response = await client.get(f"/api/projects/{private_project}/users")
    assert response.status_code == 200
    grants = {grant["username"]: grant["permission_level"] for grant in response.json()}
    assert grants == {"owner": "project_admin", "editor": "editor"}

    editor_id = next(grant["user_id"] for grant in response.json() if grant["username"] == "editor")
    response = await client.put(
        f"/api/projects/{private_project}/users/{editor_id}", json={"permission_level": "project_admin"}
    )
    assert response.status_code == 200
    assert response.json()["permission_level"] == "project_admin"

    response = await client.delete(f"/api/projects/{private_project}/users/{editor_id}")
    assert response.json() == {"removed": True}
    response = await client.delete(f"/api/projects/{private_project}/users/{editor_id}")
    assert response.json() == {"removed": False}

    response = await client.post(
        f"/api/projects/{private_project}/users", json={"username": "nobody", "permission_level": "editor"}
    )
    assert response.status_code == 404


async def test_hierarchy_endpoints(client, private_project):
    await login(client, "owner")
    child = (await client.post("/api/projects", json={"name": "Child", "parent_id": private_project})).json()
    grandchild = (await client.post("/api/projects", json={"name": "Grandchild", "parent_id": child["id"]})).json()
    assert grandchild["path"] == "Secret/Child/Grandchild"
    assert grandchild["depth"] == 2

    response = await client.get(f"/api/projects/{grandchild['id']}/ancestors")
    assert [p["name"] for p in response.json()] == ["Secret", "Child"]

    response = await client.get(f"/api/projects/{grandchild['id']}/breadcrumb")
    assert [p["name"] for p in response.json()] == ["Secret", "Child", "Grandchild"]

    response = await client.get(f"/api/projects/{private_project}/descendants")
    assert [p["name"] for p in response.json()] == ["Child", "Grandchild"]

    response = await client.post(f"/api/projects/{private_project}/move", json={"new_parent_id": grandchild["id"]})
    assert response.status_code == 400
    assert "circular" in response.json()["error"]

    response = await client.post(f"/api/projects/{child['id']}/move", json={"new_parent_id": None})
    assert response.status_code == 200
    assert (response.json()["path"], response.json()["depth"]) == ("Child", 0)

    response = await client.get(f"/api/projects/{grandchild['id']}")
    assert response.json()["path"] == "Child/Grandchild"

    response = await client.post("/api/projects", json={"name": "Child"})
    assert response.status_code == 409


async def test_delete_project_with_tasks_needs_force(client, private_project):
    await login(client, "owner")
    await client.post("/api/tasks", json=_task_payload(private_project))

    response = await client.delete(f"/api/projects/{private_project}")
    assert response.status_code == 409
    assert response.json()["type"] == "conflict_error"

    response = await client.delete(f"/api/projects/{private_project}?force=true")
    assert response.status_code == 200

    response = await client.get(f"/api/projects/{private_project}")
    assert response.status_code == 404


async def test_archive_and_reactivate(client, private_project):
    await login(client, "owner")
    child = (await client.post("/api/projects", json={"name": "Child", "parent_id": private_project})).json()

    response = await client.post(f"/api/projects/{private_project}/archive", json={"cascade": True})
    assert response.status_code == 200
    assert response.json()["archived_count"] == 2
    assert response.json()["project"]["status"] == "archived"

    response = await client.post(f"/api/projects/{private_project}/reactivate")
    assert response.json()["status"] == "active"

    response = await client.get(f"/api/projects/{child['id']}")
    assert response.json()["status"] == "archived"

    response = await client.post(f"/api/projects/{private_project}/reactivate")
    assert response.status_code == 409


async def test_tree_response_shape(client, private_project):
    await login(client, "owner")
    child = (await client.post("/api/projects", json={"name": "Child", "parent_id": private_project})).json()
    await client.post("/api/tasks", json=_task_payload(child["id"]))

    response = await client.get("/api/projects/tree?include_stats=true")

    assert response.status_code == 200
    tree = response.json()
    assert tree["max_depth"] == 1
    assert set(tree["flat_map"]) == {str(private_project), str(child["id"])}
    assert tree["flat_map"][str(private_project)]["child_ids"] == [child["id"]]

    (root,) = tree["roots"]
    assert root["id"] == private_project
    assert root["has_children"] is True
    assert root["direct_stats"]["total_tasks"] == 0
    assert root["subtree_stats"]["total_tasks"] == 1
    assert [node["name"] for node in root["children"]] == ["Child"]
    assert root["children"][0]["children"] == []

    response = await client.get("/api/projects/tree")
    assert response.json()["roots"][0]["direct_stats"] is None


async def test_project_stats_endpoint(client, private_project):
    await login(client, "owner")
    child = (await client.post("/api/projects", json={"name": "Child", "parent_id": private_project})).json()
    await client.post("/api/tasks", json=_task_payload(private_project))
    await client.post("/api/tasks", json=_task_payload(child["id"], status="in_progress"))

    response = await client.get(f"/api/projects/{private_project}/stats")

    body = response.json()
    assert body["project_id"] == private_project
    assert body["subproject_count"] == 1
    assert body["total_tasks"] == 2
    assert body["in_progress_tasks"] == 1
    assert body["direct"]["total_tasks"] == 1


async def test_project_stats_leave_out_private_subprojects(client, users):
    await login(client, "owner")
    public = (await client.post("/api/projects", json={"name": "Pub", "is_public": True})).json()
    hidden = (
        await client.post("/api/projects", json={"name": "Hidden", "parent_id": public["id"], "is_public": False})
    ).json()
    for _ in range(3):
        await client.post("/api/tasks", json=_task_payload(hidden["id"]))

    response = await client.get(f"/api/projects/{public['id']}/stats")
    assert response.json()["total_tasks"] == 3
    assert response.json()["subproject_count"] == 1

    for username in (None, "stranger"):
        if username is None:
            client.cookies.clear()
        else:
            await login(client, username)

        stats = (await client.get(f"/api/projects/{public['id']}/stats")).json()
        tree = (await client.get("/api/projects/tree?include_stats=true")).json()
        (root,) = [node for node in tree["roots"] if node["id"] == public["id"]]

        assert stats["total_tasks"] == 0
        assert stats["subproject_count"] == 0
        assert root["subtree_stats"]["total_tasks"] == stats["total_tasks"]


async def test_timer_endpoints(client, private_project):
    await login(client, "editor")
    task_id = (await client.post("/api/tasks", json=_task_payload(private_project))).json()["id"]

    response = await client.post("/api/time-sessions/start", json={"task_id": task_id})
    assert response.status_code == 201
    first_id = response.json()["id"]

    response = await client.post("/api/time-sessions/start", json={"task_id": task_id})
    second_id = response.json()["id"]

    response = await client.get("/api/time-sessions/active")
    assert [session["id"] for session in response.json()] == [second_id]

    response = await client.get(f"/api/tasks/{task_id}")
    assert response.json()["status"] == "in_progress"

    response = await client.post("/api/time-sessions/stop", json={})
    assert response.status_code == 400
    response = await client.post("/api/time-sessions/stop", json={"task_id": task_id, "session_id": first_id})
    assert response.status_code == 400

    response = await client.post("/api/time-sessions/stop", json={"task_id": task_id})
    assert response.status_code == 200
    assert response.json()["id"] == second_id
    assert response.json()["is_active"] is False

    response = await client.post("/api/time-sessions/stop", json={"task_id": task_id})
    assert response.status_code == 404


async def test_quick_links(client, private_project):
    await login(client, "editor")
    base = {"project_id": private_project, "category": "docs"}
    first = (await client.post("/api/quick-links", json={**base, "title": "Guide", "url": "https://a.example"})).json()
    second = (await client.post("/api/quick-links", json={**base, "title": "API", "url": "https://b.example"})).json()
    assert (first["position"], second["position"]) == (0, 1)

    response = await client.post("/api/quick-links", json={**base, "title": "Bad", "url": "ftp://c.example"})
    assert response.status_code == 400

    response = await client.post(
        "/api/quick-links/reorder", json={"link_ids": [second["id"], first["id"]], "category": "docs"}
    )
    assert [link["title"] for link in response.json()] == ["API", "Guide"]

    response = await client.get(f"/api/quick-links?project_id={private_project}&grouped=true")
    grouped = response.json()
    assert set(grouped) == {"docs", "tools", "resources", "other"}
    assert [link["title"] for link in grouped["docs"]] == ["API", "Guide"]
    assert grouped["tools"] == []

    client.cookies.clear()
    response = await client.get(f"/api/quick-links?project_id={private_project}")
    assert response.status_code == 404


async def test_daily_analytics(client, private_project):
    await login(client, "editor")
    task_id = (await client.post("/api/tasks", json=_task_payload(private_project))).json()["id"]
    await client.post(f"/api/tasks/{task_id}/complete", json={"actual_intensity": 2})

    today = utc_now().date()
    start = datetime.combine(today, time(0, 0), tzinfo=timezone.utc)
    response = await client.post(
        "/api/time-sessions",
        json={
            "task_id": task_id,
            "start_time": start.isoformat(),
            "end_time": (start + timedelta(seconds=150)).isoformat(),
        },
    )
    assert response.status_code == 201

    response = await client.get("/api/analytics/daily?days=7")

    body = response.json()
    assert body["days"] == 7
    assert len(body["entries"]) == 7
    assert body["entries"][-1]["day"] == today.isoformat()
    assert body["entries"][-1]["total_minutes"] == 2
    assert body["entries"][-1]["completed_tasks"] == 1
    assert body["total_completed_tasks"] == 1

    response = await client.get("/api/analytics/daily?days=0")
    assert response.status_code == 400


async def test_admin_sees_everything(client, private_project):
    await login(client, FIRST_ADMIN_USERNAME, FIRST_ADMIN_PASSWORD)

    response = await client.get(f"/api/projects/{private_project}/users")
    assert response.status_code == 200

    response = await client.get("/api/admin/projects/status-counts")
    assert response.json() == {"active": 1, "done": 0, "archived": 0}

    response = await client.post("/api/admin/tasks/archive-completed?older_than_days=0")
    assert response.status_code == 200
