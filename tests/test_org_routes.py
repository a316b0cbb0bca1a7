"""
tests/test_org_routes.py -- Organization lifecycle and profile endpoints.

Covers:
  - creation writes the org, the sudo role and the founder's membership
  - read / update / delete gated by membership and role permissions
  - global admin deactivation hides the organization from every member
  - profile read, update and self-deletion
"""

from __future__ import annotations

from core.permissions import ORG_UPDATE, PERMISSIONS
from tests.conftest import unique


def test_create_organization_makes_founder_sudo(api):
    owner = api.make_user()
    org = api.create_org(owner, name=unique("club-"))
    assert org["is_active"] is True
    assert org["version"] == 0

    sudo = api.state.org_store.get_role_by_name(org["id"], "sudo")
    assert sudo.permissions == list(PERMISSIONS)
    assert api.state.org_store.get_member(owner.profile.id, org["id"]).role_id == sudo.id


def test_create_duplicate_name_is_400(api):
    owner = api.make_user()
    org = api.create_org(owner)
    resp = api.client.post("/api/v1/organizations", json={"name": org["name"]}, headers=api.headers(owner))
    assert resp.status_code == 400
    assert "name" in resp.json()["error"]["fields"]


def test_create_requires_live_user(api):
    assert api.client.post("/api/v1/organizations", json={"name": "anon"}).status_code == 401
    unverified = api.make_user(activated=False)
    resp = api.client.post("/api/v1/organizations", json={"name": "x"}, headers=api.headers(unverified))
    assert resp.status_code == 401


def test_list_shows_only_my_organizations(api):
    owner = api.make_user()
    other = api.make_user()
    mine = api.create_org(owner)
    api.create_org(other)
    resp = api.client.get("/api/v1/organizations", headers=api.headers(owner))
    assert [o["id"] for o in resp.json()] == [mine["id"]]


def test_members_can_read_outsiders_cannot(api):
    owner = api.make_user()
    org = api.create_org(owner)
    outsider = api.make_user()
    assert api.client.get(f"/api/v1/organizations/{org['id']}", headers=api.headers(owner)).status_code == 200
    assert api.client.get(f"/api/v1/organizations/{org['id']}", headers=api.headers(outsider)).status_code == 403
    assert api.client.get(f"/api/v1/organizations/{org['id']}").status_code == 401
    assert api.client.get("/api/v1/organizations/999999", headers=api.headers(owner)).status_code == 403


def test_update_requires_update_org(api):
    owner = api.make_user()
    org = api.create_org(owner)
    viewer = api.make_user()
    viewer_role = api.create_role(owner, org["id"], ["create_event"])
    api.add_member(org["id"], viewer, viewer_role["id"])

    resp = api.client.put(f"/api/v1/organizations/{org['id']}", json={"description": "hi"}, headers=api.headers(viewer))
    assert resp.status_code == 403

    editor = api.make_user()
    editor_role = api.create_role(owner, org["id"], [ORG_UPDATE])
    api.add_member(org["id"], editor, editor_role["id"])
    resp = api.client.put(f"/api/v1/organizations/{org['id']}", json={"description": "hi"}, headers=api.headers(editor))
    assert resp.status_code == 200
    assert resp.json()["description"] == "hi"
    assert resp.json()["version"] == 1


def test_update_to_taken_name_is_400(api):
    owner = api.make_user()
    first = api.create_org(owner)
    second = api.create_org(owner)
    resp = api.client.put(
        f"/api/v1/organizations/{second['id']}", json={"name": first["name"]}, headers=api.headers(owner)
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "duplicate"


def test_admin_deactivation_locks_members_out(api):
    owner = api.make_user()
    org = api.create_org(owner)
    admin = api.make_user(role="admin")

    assert api.client.patch(f"/api/v1/organizations/{org['id']}/deactivate", headers=api.headers(owner)).status_code == 403

    resp = api.client.patch(f"/api/v1/organizations/{org['id']}/deactivate", headers=api.headers(admin))
    assert resp.status_code == 200
    assert resp.json()["is_active"] is False

    assert api.client.get(f"/api/v1/organizations/{org['id']}", headers=api.headers(owner)).status_code == 403
    assert api.client.get("/api/v1/organizations", headers=api.headers(owner)).json() == []

    again = api.client.patch(f"/api/v1/organizations/{org['id']}/deactivate", headers=api.headers(admin))
    assert again.status_code == 400


def test_delete_organization(api):
    owner = api.make_user()
    org = api.create_org(owner)
    resp = api.client.delete(f"/api/v1/organizations/{org['id']}", headers=api.headers(owner))
    assert resp.status_code == 200
    assert api.client.get(f"/api/v1/organizations/{org['id']}", headers=api.headers(owner)).status_code == 403
    assert api.state.org_store.get_organization(org["id"], include_deleted=True).deleted_at is not None


def test_event_role_cannot_delete_org(api):
    owner = api.make_user()
    org = api.create_org(owner)
    planner = api.make_user()
    role = api.create_role(owner, org["id"], ["create_event"])
    api.add_member(org["id"], planner, role["id"])
    resp = api.client.delete(f"/api/v1/organizations/{org['id']}", headers=api.headers(planner))
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "forbidden"
    assert api.state.org_store.get_organization(org["id"]) is not None


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


def test_get_my_profile(api):
    user = api.make_user()
    resp = api.client.get("/api/v1/profiles/me", headers=api.headers(user))
    assert resp.status_code == 200
    assert resp.json()["profile"]["username"] == user.profile.username


def test_update_my_profile(api):
    user = api.make_user()
    new_name = unique("renamed")
    resp = api.client.put(
        "/api/v1/profiles/me",
        json={"username": new_name, "date_of_birth": "12/31/1999"},
        headers=api.headers(user),
    )
    assert resp.status_code == 200
    assert resp.json()["profile"]["username"] == new_name
    assert resp.json()["email"] == user.email
    me = api.client.get("/api/v1/profiles/me", headers=api.headers(user)).json()
    assert me["profile"]["date_of_birth"] == "12/31/1999"


def test_update_profile_to_taken_email_is_400(api):
    user = api.make_user()
    other = api.make_user()
    resp = api.client.put("/api/v1/profiles/me", json={"email": other.email}, headers=api.headers(user))
    assert resp.status_code == 400
    assert "email" in resp.json()["error"]["fields"]


def test_delete_my_account(api):
    user = api.make_user()
    headers = api.headers(user)
    assert api.client.delete("/api/v1/profiles/me", headers=headers).status_code == 200
    assert api.client.get("/api/v1/profiles/me", headers=headers).status_code == 401