# tests/test_users.py
"""Registration, login and user CRUD."""


def test_register_returns_token_and_public_fields(client):
    r = client.post("/users/register", json={"username": "mario", "password": "itsame123"})

    assert r.status_code == 201
    body = r.json()
    assert body["success"] is True
    user = body["response"]
    assert user["username"] == "mario"
    assert len(user["access_token"]) == 256
    assert user["reviews"] == []
    assert "hashed_password" not in user


def test_register_duplicate_username(client, register_user):
    """The second registration is rejected and the first user stays queryable."""
    first = register_user("luigi")

    r = client.post("/users/register", json={"username": "luigi", "password": "another-pass"})
    assert r.status_code == 409, f"Expected 409 but got {r.status_code}"
    assert r.json()["success"] is False
    assert r.json()["error"] == "conflict"

    r = client.get(f"/users/{first['id']}")
    assert r.status_code == 200
    assert r.json()["response"]["username"] == "luigi"


def test_register_requires_username_and_password(client):
    r = client.post("/users/register", json={"username": "   ", "password": "x"})
    assert r.status_code == 400
    assert r.json()["error"] == "validation_error"

    r = client.post("/users/register", json={"username": "peach"})
    assert r.status_code == 400


def test_login_returns_registration_token(client, register_user):
    user = register_user("toad", password="mushroom1")

    r = client.post("/users/login", json={"username": "toad", "password": "mushroom1"})

    assert r.status_code == 200
    assert r.json()["response"]["access_token"] == user["access_token"]
    assert r.json()["response"]["id"] == user["id"]


def test_login_invalid_credentials(client, register_user):
    register_user("wario", password="garlic123")

    r = client.post("/users/login", json={"username": "wario", "password": "wrongpassword"})
    assert r.status_code == 401, f"Expected 401 but got {r.status_code}"
    assert r.json()["message"] == "Credentials do not match"

    r = client.post("/users/login", json={"username": "nobody", "password": "wrongpassword"})
    assert r.status_code == 401


def test_get_user_hides_token(client, test_user):
    r = client.get(f"/users/{test_user['id']}")

    assert r.status_code == 200
    assert "access_token" not in r.json()["response"]


def test_get_unknown_user(client):
    r = client.get("/users/999")
    assert r.status_code == 404
    assert r.json() == {"success": False, "message": "User not found", "error": "not_found"}


def test_list_users(client, register_user):
    r = client.get("/users")
    assert r.status_code == 200
    assert r.json()["response"] == []
    assert r.json()["message"] == "There are no users"

    register_user("a")
    register_user("b")
    r = client.get("/users")
    assert [u["username"] for u in r.json()["response"]] == ["a", "b"]


def test_update_user_requires_token(client, test_user):
    r = client.patch(f"/users/{test_user['id']}", json={"username": "renamed"})
    assert r.status_code == 401
    assert r.json()["message"] == "Please log in"

    r = client.patch(
        f"/users/{test_user['id']}",
        json={"username": "renamed"},
        headers={"Authorization": "not-a-real-token"},
    )
    assert r.status_code == 401


def test_update_username_and_password(client, test_user):
    r = client.patch(
        f"/users/{test_user['id']}",
        json={"username": "renamed", "password": "new-password"},
        headers=test_user["headers"],
    )
    assert r.status_code == 200
    assert r.json()["response"]["username"] == "renamed"

    r = client.post("/users/login", json={"username": "renamed", "password": "new-password"})
    assert r.status_code == 200
    # The token is not rotated by a password change
    assert r.json()["response"]["access_token"] == test_user["access_token"]


def test_update_username_conflict(client, register_user):
    alice = register_user("alice")
    register_user("bob")

    r = client.patch(f"/users/{alice['id']}", json={"username": "bob"}, headers=alice["headers"])
    assert r.status_code == 409


def test_update_username_is_stripped(client, register_user):
    bob = register_user("bob", password="builder1")

    r = client.patch(f"/users/{bob['id']}", json={"username": "bobby "}, headers=bob["headers"])
    assert r.status_code == 200
    assert r.json()["response"]["username"] == "bobby"

    r = client.post("/users/login", json={"username": "bobby", "password": "builder1"})
    assert r.status_code == 200
    assert r.json()["response"]["access_token"] == bob["access_token"]


def test_update_rejects_blank_username(client, test_user):
    r = client.patch(f"/users/{test_user['id']}", json={"username": "   "}, headers=test_user["headers"])
    assert r.status_code == 400
    assert client.get(f"/users/{test_user['id']}").json()["response"]["username"] == "tester"


def test_update_with_empty_body(client, test_user):
    r = client.patch(f"/users/{test_user['id']}", json={}, headers=test_user["headers"])
    assert r.status_code == 400


def test_delete_user_removes_reviews(client, test_user, make_game):
    game = make_game("Galaga")
    r = client.post(f"/games/{game.id}/reviews", json={"message": "classic"}, headers=test_user["headers"])
    assert r.status_code == 201

    r = client.delete(f"/users/{test_user['id']}", headers=test_user["headers"])
    assert r.status_code == 200
    assert r.json()["response"]["username"] == "tester"

    assert client.get(f"/users/{test_user['id']}").status_code == 404
    assert client.get("/reviews").json()["response"] == []
    # The deleted token no longer authenticates
    assert client.get("/favoritegames", headers=test_user["headers"]).status_code == 401


def test_delete_unknown_user(client, test_user):
    r = client.delete("/users/12345", headers=test_user["headers"])
    assert r.status_code == 404
