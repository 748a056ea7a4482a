# tests/test_reviews.py
"""Posting, listing, editing and deleting reviews."""

import pytest


@pytest.fixture
def game(make_game):
    return make_game("Metal Slug", genres=["Shooter"])


def post_review(client, game_id, headers, message="Great game"):
    return client.post(f"/games/{game_id}/reviews", json={"message": message}, headers=headers)


def test_post_review_copies_game_name(client, test_user, game):
    r = post_review(client, game.id, test_user["headers"], "Tanks and explosions")

    assert r.status_code == 201
    review = r.json()["response"]
    assert review["message"] == "Tanks and explosions"
    assert review["game_id"] == game.id
    assert review["game_name"] == "Metal Slug"
    assert review["user"] == {"id": test_user["id"], "username": "tester"}


def test_post_review_requires_token(client, game):
    r = client.post(f"/games/{game.id}/reviews", json={"message": "anonymous"})
    assert r.status_code == 401
    assert r.json() == {"success": False, "message": "Please log in", "error": "unauthorized"}


def test_bearer_prefix_is_accepted(client, test_user, game):
    headers = {"Authorization": f"Bearer {test_user['access_token']}"}
    assert post_review(client, game.id, headers).status_code == 201


def test_post_review_on_unknown_game(client, test_user):
    r = post_review(client, 999, test_user["headers"])
    assert r.status_code == 404
    assert r.json()["message"] == "Game not found"


def test_post_review_requires_message(client, test_user, game):
    r = client.post(f"/games/{game.id}/reviews", json={"message": ""}, headers=test_user["headers"])
    assert r.status_code == 400


def test_review_message_is_stripped(client, test_user, game):
    r = client.post(f"/games/{game.id}/reviews", json={"message": "   "}, headers=test_user["headers"])
    assert r.status_code == 400

    r = client.post(f"/games/{game.id}/reviews", json={"message": "  Classic.  "}, headers=test_user["headers"])
    assert r.status_code == 201
    review_id = r.json()["response"]["id"]
    assert r.json()["response"]["message"] == "Classic."

    r = client.patch(f"/reviews/{review_id}", json={"message": " \t "}, headers=test_user["headers"])
    assert r.status_code == 400
    assert client.get(f"/reviews/{review_id}").json()["response"]["message"] == "Classic."


def test_user_reviews_are_derived_from_reviews(client, test_user, game):
    first = post_review(client, game.id, test_user["headers"], "one").json()["response"]
    second = post_review(client, game.id, test_user["headers"], "two").json()["response"]

    user = client.get(f"/users/{test_user['id']}").json()["response"]
    assert user["reviews"] == [first["id"], second["id"]]

    r = client.get(f"/users/{test_user['id']}/reviews")
    assert [rv["message"] for rv in r.json()["response"]] == ["one", "two"]


def test_reviews_scoped_by_game(client, register_user, make_game, game):
    other_game = make_game("Contra")
    alice = register_user("alice")
    bob = register_user("bob")
    post_review(client, game.id, alice["headers"], "alice on slug")
    post_review(client, other_game.id, bob["headers"], "bob on contra")

    r = client.get(f"/games/{game.id}/reviews")
    assert r.status_code == 200
    reviews = r.json()["response"]
    assert len(reviews) == 1
    assert reviews[0]["user"]["username"] == "alice"

    assert len(client.get("/reviews").json()["response"]) == 2


def test_empty_review_lists(client, test_user, game):
    r = client.get(f"/games/{game.id}/reviews")
    assert r.json() == {"success": True, "response": [], "message": "This game has no reviews"}

    r = client.get(f"/users/{test_user['id']}/reviews")
    assert r.json()["response"] == []

    assert client.get("/games/999/reviews").status_code == 404
    assert client.get("/users/999/reviews").status_code == 404


def test_update_review(client, register_user, game):
    author = register_user("author")
    someone_else = register_user("someone")
    review = post_review(client, game.id, author["headers"]).json()["response"]

    r = client.patch(f"/reviews/{review['id']}", json={"message": "edited"}, headers=someone_else["headers"])

    # Any authenticated user may edit a review
    assert r.status_code == 200
    assert r.json()["response"]["message"] == "edited"
    assert r.json()["response"]["user"]["username"] == "author"
    assert client.get(f"/reviews/{review['id']}").json()["response"]["message"] == "edited"


def test_update_review_requires_token(client, test_user, game):
    review = post_review(client, game.id, test_user["headers"]).json()["response"]
    assert client.patch(f"/reviews/{review['id']}", json={"message": "x"}).status_code == 401


def test_delete_review(client, test_user, game):
    review = post_review(client, game.id, test_user["headers"]).json()["response"]

    r = client.delete(f"/reviews/{review['id']}", headers=test_user["headers"])
    assert r.status_code == 200
    assert r.json()["response"]["id"] == review["id"]

    assert client.get(f"/reviews/{review['id']}").status_code == 404
    assert client.get(f"/users/{test_user['id']}").json()["response"]["reviews"] == []
    assert client.delete(f"/reviews/{review['id']}", headers=test_user["headers"]).status_code == 404
