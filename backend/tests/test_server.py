"""Tests for the HTTP surface (app.py / Blueprint routes)."""

import io
import os
from datetime import timedelta

import pytest
from PIL import Image

from entities import AuthType, PrivilegeLevel
from services.site_config import ENTRIES_REQUIRE_APPROVAL, MAX_USER_VOTES, VOTING_ENABLED


def _login(client, name="alice", password="secret"):
    return client.post("/user/login", data={"Username": name, "Password": password})


@pytest.fixture
def admin(make_user, client):
    user = make_user("admin", password="hunter22", privilege=PrivilegeLevel.ADMIN)
    _login(client, "admin", "hunter22")
    return user


@pytest.fixture
def open_cycle(services):
    services.cycles.start_cycle()


def test_index_anonymous(client):
    response = client.get("/")
    assert response.status_code == 200
    body = response.get_json()
    assert body["movies"] == []
    assert body["cycle"] is None
    assert "available_votes" not in body


def test_unknown_movie(client):
    response = client.get("/movie/999")
    assert response.status_code == 404
    assert response.get_json()["code"] == "NOT_FOUND"


class TestAccounts:
    def test_signup_sets_session_cookie(self, client):
        response = client.post(
            "/user/new",
            data={"Username": "alice", "Password": "secret", "PasswordRepeat": "secret"},
        )
        assert response.status_code == 201
        assert response.get_json()["user"]["name"] == "alice"
        assert client.get_cookie("moviepoll-session") is not None
        assert client.get("/user").status_code == 200

    def test_signup_form_errors(self, client):
        response = client.post("/user/new", data={"Username": "al", "Password": "a", "PasswordRepeat": "b"})
        assert response.status_code == 400
        body = response.get_json()
        assert body["code"] == "FORM_INVALID"
        assert set(body["context"]["fields"]) == {"Username", "PasswordRepeat"}

    def test_login_and_logout(self, client, make_user):
        make_user()
        assert _login(client).status_code == 200
        assert client.get("/user").get_json()["user"]["name"] == "alice"

        client.get("/user/logout")
        response = client.get("/user")
        assert response.status_code == 302
        assert response.headers["Location"].endswith("/user/login")

    def test_wrong_password_redirects_to_login(self, client, make_user):
        make_user()
        response = _login(client, password="nope")
        assert response.status_code == 302

    def test_user_page_requires_login(self, client):
        response = client.get("/user")
        assert response.status_code == 302
        assert response.headers["Location"].endswith("/user/login")

    def test_update_profile(self, client, make_user):
        make_user()
        _login(client)
        response = client.post("/user", data={"Email": "a@example.org", "NotifyEnd": "on"})
        user = response.get_json()["user"]
        assert user["email"] == "a@example.org"
        assert user["notify_cycle_end"] is True
        assert user["notify_vote_selection"] is False

    def test_cannot_remove_last_login(self, client, make_user):
        make_user()
        _login(client)
        assert client.post("/user/remove/local").status_code == 400

    def test_stale_session_is_dropped(self, client, make_user, data):
        user = make_user()
        _login(client)
        local = user.get_auth_method(AuthType.LOCAL)
        local.date = local.date + timedelta(days=1)
        data.update_user(user)

        assert "available_votes" not in client.get("/").get_json()
        assert client.get("/user").status_code == 302

    def test_password_reset_link(self, client, admin, make_user, data):
        alice = make_user()
        issued = client.post(f"/admin/user/{alice.id}", data={"action": "password"}).get_json()
        client.get("/user/logout")

        assert client.get(issued["url"]).get_json()["type"] == "PasswordReset"
        response = client.post(issued["url"], data={"Key": issued["key"], "Password": "fresh"})
        assert response.status_code == 200
        assert _login(client, "alice", "fresh").status_code == 200
        assert client.get(issued["url"]).status_code == 404


class TestPoll:
    def test_nominate_and_vote(self, client, make_user, services, open_cycle):
        services.site_config.set_bool(VOTING_ENABLED, True)
        services.site_config.set_int(MAX_USER_VOTES, 2)
        make_user()
        _login(client)

        response = client.post("/add", data={"Links": "https://letterboxd.com/film/alien", "Title": "Alien"})
        assert response.status_code == 201
        movie_id = response.get_json()["id"]

        voted = client.post(f"/vote/{movie_id}").get_json()
        assert voted["voted"] is True
        assert voted["available_votes"] == 1

        index = client.get("/").get_json()
        assert index["voted"] == [movie_id]
        assert index["movies"][0]["votes"] == 1

        assert client.post(f"/vote/{movie_id}").get_json()["voted"] is False

    def test_vote_needs_login(self, client, open_cycle):
        assert client.get("/vote/1").status_code == 302

    def test_vote_while_disabled(self, client, make_user, services, open_cycle):
        services.site_config.set_bool(VOTING_ENABLED, False)
        make_user()
        _login(client)
        movie_id = client.post("/add", data={"Links": "https://letterboxd.com/film/ran", "Title": "Ran"}).get_json()["id"]
        response = client.post(f"/vote/{movie_id}")
        assert response.status_code == 400
        assert response.get_json()["code"] == "POLICY_DISABLED"

    def test_add_field_errors(self, client, make_user, open_cycle):
        make_user()
        _login(client)
        response = client.post("/add", data={"Links": "", "Title": ""})
        assert response.status_code == 400
        assert set(response.get_json()["context"]["fields"]) == {"Links", "Title"}

    def test_unapproved_movie_hidden(self, client, make_user, services, open_cycle):
        services.site_config.set_bool(ENTRIES_REQUIRE_APPROVAL, True)
        make_user()
        _login(client)
        movie_id = client.post("/add", data={"Links": "https://letterboxd.com/film/ran", "Title": "Ran"}).get_json()["id"]
        assert client.get("/").get_json()["movies"] == []
        assert client.get(f"/movie/{movie_id}").status_code == 404

    def test_add_form_limits(self, client, make_user):
        make_user()
        _login(client)
        body = client.get("/add").get_json()
        assert body["formfill_enabled"] is True
        assert body["autofill_enabled"] is False
        assert body["max_title_length"] > 0

    def test_history(self, client, services, data):
        services.cycles.start_cycle()
        services.cycles.finish_close([])
        body = client.get("/history").get_json()
        assert len(body["cycles"]) == 1
        assert body["cycles"][0]["ended"] is not None
        assert body["cycles"][0]["watched"] == []


class TestAdmin:
    @pytest.mark.parametrize("path", ["/admin", "/admin/config", "/admin/users", "/admin/cyclepost"])
    def test_hidden_from_anonymous(self, client, path):
        assert client.get(path).status_code == 404

    def test_hidden_from_users(self, client, make_user):
        make_user()
        _login(client)
        response = client.get("/admin")
        assert response.status_code == 404
        assert response.get_json()["error"] == "Page not found"

    def test_config_update(self, client, admin, services):
        response = client.post(
            "/admin/config",
            data={"MaxUserVotes": "3", "TmdbToken": "", "NoSuchKey": "x"},
        )
        assert response.status_code == 200
        assert response.get_json()["updated"] == ["MaxUserVotes"]
        assert services.site_config.get_int(MAX_USER_VOTES) == 3

        values = {v["key"]: v for v in client.get("/admin/config").get_json()["config"]}
        assert values["MaxUserVotes"]["value"] == 3
        assert values["TmdbToken"]["value"] == ""

    def test_config_type_error(self, client, admin):
        response = client.post("/admin/config", data={"MaxUserVotes": "many"})
        assert response.status_code == 400

    def test_cycle_close_flow(self, client, admin, services, data):
        assert client.post("/admin/cycles", data={"action": "start"}).status_code == 201
        services.site_config.set_bool(VOTING_ENABLED, True)
        movie_id = client.post(
            "/add", data={"Links": "https://letterboxd.com/film/akira", "Title": "Akira"}
        ).get_json()["id"]
        client.post(f"/vote/{movie_id}")

        candidates = client.get("/admin/cyclepost").get_json()["candidates"]
        assert [m["id"] for m in candidates] == [movie_id]
        assert client.get("/admin").get_json()["closing"] is True

        response = client.post("/admin/cyclepost", data={"action": "finish", "watched": [str(movie_id)]})
        assert response.status_code == 200
        cycle = response.get_json()["cycle"]
        assert [m["id"] for m in cycle["watched"]] == [movie_id]
        assert data.get_movie(movie_id).cycle_watched is not None
        assert client.get("/admin").get_json()["closing"] is False

    def test_cycle_close_cancel(self, client, admin, services):
        services.cycles.start_cycle()
        client.get("/admin/cyclepost")
        response = client.post("/admin/cyclepost", json={"action": "cancel"})
        assert response.get_json() == {"cancelled": True}
        assert services.votes.voting_enabled()

    def test_unknown_cycle_action(self, client, admin):
        assert client.post("/admin/cycles", data={"action": "explode"}).status_code == 400

    def test_ban_user(self, client, admin, make_user):
        bob = make_user("bobby")
        response = client.post(f"/admin/user/{bob.id}", data={"action": "ban"})
        assert response.status_code == 400
        assert response.get_json()["code"] == "POLICY_DISABLED"

    def test_delete_user(self, client, admin, make_user, data):
        bob = make_user("bobby")
        assert client.post(f"/admin/user/{bob.id}", data={"action": "delete"}).status_code == 200
        assert data.get_user(bob.id).name == "[deleted]"

    def test_cannot_act_on_self(self, client, admin):
        response = client.post(f"/admin/user/{admin.id}", data={"action": "purge"})
        assert response.get_json()["code"] == "CONFLICT"

    def test_approve_movie(self, client, admin, services, data):
        services.site_config.set_bool(ENTRIES_REQUIRE_APPROVAL, True)
        services.cycles.start_cycle()
        movie_id = client.post("/add", data={"Links": "https://letterboxd.com/film/ran", "Title": "Ran"}).get_json()["id"]
        assert [m["id"] for m in client.get("/admin/movies").get_json()["movies"]] == [movie_id]

        client.post(f"/admin/movie/{movie_id}", data={"action": "approve"})
        assert data.get_movie(movie_id).approved

    def test_edit_movie(self, client, admin, services, data):
        services.cycles.start_cycle()
        movie_id = client.post("/add", data={"Links": "https://letterboxd.com/film/ran", "Title": "Ran"}).get_json()["id"]

        response = client.post(
            f"/admin/movie/{movie_id}",
            data={
                "action": "edit",
                "Title": "Ran (1985)",
                "Description": "King Lear on horseback",
                "Links": "https://www.imdb.com/title/tt0089881/\nhttps://letterboxd.com/film/ran",
            },
        )
        assert response.status_code == 200
        edited = response.get_json()["movie"]
        assert edited["name"] == "Ran (1985)"
        assert edited["description"] == "King Lear on horseback"
        assert [link["url"] for link in edited["links"]] == [
            "https://www.imdb.com/title/tt0089881/",
            "https://letterboxd.com/film/ran",
        ]
        assert data.get_movie(movie_id).name == "Ran (1985)"

    def test_edit_movie_with_poster(self, client, admin, services, settings):
        services.cycles.start_cycle()
        movie_id = client.post("/add", data={"Links": "https://letterboxd.com/film/ran", "Title": "Ran"}).get_json()["id"]
        buf = io.BytesIO()
        Image.new("RGB", (40, 60), (255, 0, 0)).save(buf, "PNG")
        buf.seek(0)

        response = client.post(
            f"/admin/movie/{movie_id}",
            data={"action": "edit", "PosterFile": (buf, "ran.png")},
            content_type="multipart/form-data",
        )
        assert response.get_json()["movie"]["poster"] == f"posters/{movie_id}-Ran.jpg"
        assert os.path.exists(os.path.join(settings.posters_dir, f"{movie_id}-Ran.jpg"))

    def test_edit_movie_rejects_taken_title(self, client, admin, services):
        services.cycles.start_cycle()
        client.post("/add", data={"Links": "https://letterboxd.com/film/ran", "Title": "Ran"})
        movie_id = client.post(
            "/add", data={"Links": "https://letterboxd.com/film/ikiru", "Title": "Ikiru"}
        ).get_json()["id"]

        response = client.post(f"/admin/movie/{movie_id}", data={"action": "edit", "Title": "ran"})
        assert response.status_code == 400
        assert set(response.get_json()["context"]["fields"]) == {"Title"}

    def test_update_planned_end(self, client, admin, services, data):
        client.post("/admin/cycles", data={"action": "start"})
        response = client.post("/admin/cycles", data={"action": "update", "PlannedEnd": "2030-05-01"})
        assert response.status_code == 200
        assert response.get_json()["cycle"]["planned_end"].startswith("2030-05-01")
        assert data.get_current_cycle().planned_end.year == 2030

    def test_update_planned_end_needs_open_cycle(self, client, admin):
        response = client.post("/admin/cycles", data={"action": "update", "PlannedEnd": "2030-05-01"})
        assert response.get_json()["code"] == "CONFLICT"

    def test_update_planned_end_bad_date(self, client, admin, services):
        services.cycles.start_cycle()
        assert client.post("/admin/cycles", data={"action": "update", "PlannedEnd": "soon"}).status_code == 400


class TestOAuthRoutes:
    def test_unknown_provider(self, client):
        assert client.get("/oauth/myspace").status_code == 404

    def test_disabled_provider(self, client):
        response = client.get("/oauth/discord?action=login")
        assert response.get_json()["code"] == "POLICY_DISABLED"

    def test_declined_authorization(self, client):
        response = client.get("/oauth/discord/callback?error=access_denied")
        assert response.status_code == 302

    def test_add_requires_login(self, client):
        response = client.get("/oauth/discord?action=add")
        assert response.headers["Location"].endswith("/user/login")
