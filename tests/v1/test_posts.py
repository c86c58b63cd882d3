# mypy: ignore-errors
"""Tests for post endpoints, feed visibility and reposts."""

from datetime import timedelta

from fastapi import status

from medinet.db.time import utcnow
from medinet.models import Post, Share
from tests.conftest import auth_headers


def _feed_ids(client, user, **params):
    response = client.get("/api/v1/posts", headers=auth_headers(user), params=params)
    assert response.status_code == status.HTTP_200_OK
    return [item["id"] for item in response.json()["data"]]


def test_create_post(client, auth_token, test_user, event_log) -> None:
    response = client.post(
        "/api/v1/posts",
        json={
            "content": "Sepsis bundle checklist",
            "visibility": "public",
            "media": [{"media_type": "image", "media_url": "https://cdn.example.org/a.png"}],
        },
        headers=auth_token,
    )

    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()["data"]
    assert data["user_id"] == test_user.id
    assert data["author"]["first_name"] == "Alice"
    assert (data["upvotes"], data["downvotes"], data["score"]) == (0, 0, 0)
    assert data["media"][0]["display_order"] == 0
    assert [e.type for e in event_log if e.type == "post:created"] == ["post:created"]


def test_create_post_requires_content(client, auth_token) -> None:
    response = client.post("/api/v1/posts", json={"content": ""}, headers=auth_token)
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["errors"][0]["field"] == "body.content"


def test_create_post_requires_auth(client) -> None:
    response = client.post("/api/v1/posts", json={"content": "hi"})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_feed_visibility_follows_connections_and_blocks(client, make_user, make_post, connect_users) -> None:
    author = make_user("Ana", "Author")
    friend = make_user("Ben", "Friend")
    stranger = make_user("Cy", "Stranger")
    connect_users(author, friend)
    post = make_post(author, "For colleagues only", visibility="connections")

    assert post.id not in _feed_ids(client, stranger)
    assert post.id in _feed_ids(client, friend)
    assert post.id in _feed_ids(client, author)

    response = client.post(f"/api/v1/users/{friend.id}/block", headers=auth_headers(author))
    assert response.status_code == status.HTTP_200_OK

    assert post.id not in _feed_ids(client, friend)


def test_private_posts_only_reach_their_author(client, make_post, test_user, other_user, connect_users) -> None:
    connect_users(test_user, other_user)
    post = make_post(test_user, "Note to self", visibility="private")

    assert post.id in _feed_ids(client, test_user)
    assert post.id not in _feed_ids(client, other_user)
    response = client.get(f"/api/v1/posts/{post.id}", headers=auth_headers(other_user))
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_feed_sorts_and_paginates(client, make_post, test_user) -> None:
    older = make_post(test_user, "older", upvotes=5, score=5)
    newer = make_post(test_user, "newer")

    assert _feed_ids(client, test_user, sort="new")[:2] == [newer.id, older.id]
    assert _feed_ids(client, test_user, sort="top")[:2] == [older.id, newer.id]

    response = client.get("/api/v1/posts", headers=auth_headers(test_user), params={"limit": 1, "offset": 1})
    body = response.json()
    assert [item["id"] for item in body["data"]] == [older.id]
    assert body["pagination"] == {"limit": 1, "offset": 1, "hasMore": True}


def test_hot_feed_decays_score_by_age(client, make_post, test_user) -> None:
    now = utcnow()
    # 10 / 12^1.5 ~ 0.24, 3 / 2^1.5 ~ 1.06, 1 / 3^1.5 ~ 0.19
    seasoned = make_post(test_user, "seasoned", upvotes=10, score=10, created_at=now - timedelta(hours=10))
    fresh = make_post(test_user, "fresh", upvotes=3, score=3, created_at=now)
    quiet = make_post(test_user, "quiet", upvotes=1, score=1, created_at=now - timedelta(hours=1))

    assert _feed_ids(client, test_user, sort="hot") == [fresh.id, seasoned.id, quiet.id]
    assert _feed_ids(client, test_user, sort="top") == [seasoned.id, fresh.id, quiet.id]
    assert _feed_ids(client, test_user, sort="new") == [fresh.id, quiet.id, seasoned.id]


def test_repost_of_hidden_original_is_suppressed(client, make_user, make_post, connect_users) -> None:
    author = make_user("Ana", "Author")
    sharer = make_user("Ben", "Sharer")
    onlooker = make_user("Cy", "Onlooker")
    connect_users(author, sharer)
    connect_users(sharer, onlooker)
    original = make_post(author, "connections only", visibility="connections")

    response = client.post(f"/api/v1/posts/{original.id}/repost", headers=auth_headers(sharer))
    assert response.status_code == status.HTTP_201_CREATED
    repost_id = response.json()["data"]["id"]

    assert set(_feed_ids(client, sharer)) == {original.id, repost_id}
    assert _feed_ids(client, onlooker) == []
    hidden = client.get(f"/api/v1/posts/{repost_id}", headers=auth_headers(onlooker))
    assert hidden.status_code == status.HTTP_404_NOT_FOUND


def test_feed_first_page_is_cached(client, make_post, test_user) -> None:
    make_post(test_user, "cached")
    first = client.get("/api/v1/posts", headers=auth_headers(test_user), params={"sort": "hot"})
    second = client.get("/api/v1/posts", headers=auth_headers(test_user), params={"sort": "hot"})

    assert first.headers["X-Cache"] == "miss"
    assert second.headers["X-Cache"] == "fresh"
    assert first.json()["data"] == second.json()["data"]


def test_authors_own_post_invalidates_their_cached_feed(client, test_user, auth_token) -> None:
    client.get("/api/v1/posts", headers=auth_token)
    created = client.post("/api/v1/posts", json={"content": "fresh"}, headers=auth_token).json()["data"]

    response = client.get("/api/v1/posts", headers=auth_token)
    assert response.headers["X-Cache"] == "miss"
    assert created["id"] in [item["id"] for item in response.json()["data"]]


def test_feed_rejects_unknown_sort(client, auth_token) -> None:
    response = client.get("/api/v1/posts", headers=auth_token, params={"sort": "random"})
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_get_post_counts_views_from_others(client, db_session, test_post, other_auth_token, auth_token) -> None:
    response = client.get(f"/api/v1/posts/{test_post.id}", headers=other_auth_token)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["data"]["views_count"] == 1
    assert response.json()["data"]["comments"] == []

    response = client.get(f"/api/v1/posts/{test_post.id}", headers=auth_token)
    assert response.json()["data"]["views_count"] == 1


def test_update_post_marks_it_edited(client, test_post, auth_token) -> None:
    response = client.put(f"/api/v1/posts/{test_post.id}", json={"content": "Revised"}, headers=auth_token)
    assert response.status_code == status.HTTP_200_OK
    data = response.json()["data"]
    assert data["content"] == "Revised"
    assert data["is_edited"] is True
    assert data["edited_at"] is not None


def test_update_requires_a_field(client, test_post, auth_token) -> None:
    response = client.put(f"/api/v1/posts/{test_post.id}", json={}, headers=auth_token)
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_only_the_author_may_edit_or_delete(client, test_post, other_auth_token) -> None:
    response = client.put(f"/api/v1/posts/{test_post.id}", json={"content": "mine"}, headers=other_auth_token)
    assert response.status_code == status.HTTP_403_FORBIDDEN
    response = client.delete(f"/api/v1/posts/{test_post.id}", headers=other_auth_token)
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_delete_post(client, db_session, test_post, auth_token) -> None:
    response = client.delete(f"/api/v1/posts/{test_post.id}", headers=auth_token)
    assert response.status_code == status.HTTP_200_OK
    db_session.expire_all()
    assert db_session.get(Post, test_post.id) is None
    assert client.get(f"/api/v1/posts/{test_post.id}", headers=auth_token).status_code == status.HTTP_404_NOT_FOUND


def test_repost_lifecycle(client, db_session, test_post, test_user, other_user, other_auth_token, auth_token) -> None:
    response = client.post(f"/api/v1/posts/{test_post.id}/repost", headers=other_auth_token)
    assert response.status_code == status.HTTP_201_CREATED
    repost = response.json()["data"]
    assert repost["is_repost"] is True
    assert repost["original_post"]["id"] == test_post.id

    db_session.expire_all()
    assert db_session.get(Post, test_post.id).shares_count == 1

    feed = client.get("/api/v1/posts", headers=other_auth_token).json()["data"]
    row = next(item for item in feed if item["id"] == repost["id"])
    assert row["is_repost"] is True
    assert row["original_post"]["id"] == test_post.id

    again = client.post(f"/api/v1/posts/{test_post.id}/repost", headers=other_auth_token)
    assert again.status_code == status.HTTP_400_BAD_REQUEST
    assert "already reposted" in again.json()["message"]

    own = client.post(f"/api/v1/posts/{test_post.id}/repost", headers=auth_token)
    assert own.status_code == status.HTTP_400_BAD_REQUEST

    reposted = client.get(f"/api/v1/posts/{test_post.id}/reposted", headers=other_auth_token).json()["data"]
    assert reposted == {"has_reposted": True, "repost_id": repost["id"]}

    listing = client.get(f"/api/v1/posts/{test_post.id}/reposts", headers=auth_token).json()["data"]
    assert [item["id"] for item in listing] == [repost["id"]]

    response = client.delete(f"/api/v1/posts/{test_post.id}/repost", headers=other_auth_token)
    assert response.status_code == status.HTTP_200_OK
    db_session.expire_all()
    assert db_session.get(Post, test_post.id).shares_count == 0
    assert db_session.query(Share).count() == 0


def test_share_records_track_reposts(client, db_session, make_user, test_post) -> None:
    sharers = [make_user(f"Sharer{i}", "Md") for i in range(3)]
    for sharer in sharers:
        response = client.post(
            f"/api/v1/posts/{test_post.id}/repost",
            json={"content": "Worth reading"},
            headers=auth_headers(sharer),
        )
        assert response.status_code == status.HTTP_201_CREATED
    client.delete(f"/api/v1/posts/{test_post.id}/repost", headers=auth_headers(sharers[0]))

    db_session.expire_all()
    reposts = db_session.query(Post).filter(Post.parent_post_id == test_post.id).count()
    shares = db_session.query(Share).filter(Share.post_id == test_post.id).count()
    assert reposts == shares == 2
    assert db_session.get(Post, test_post.id).shares_count == 2


def test_reposting_a_repost_points_at_the_original(client, make_user, test_post, other_auth_token) -> None:
    first = client.post(f"/api/v1/posts/{test_post.id}/repost", headers=other_auth_token).json()["data"]
    third = make_user("Cara", "Cardiology")

    response = client.post(f"/api/v1/posts/{first['id']}/repost", headers=auth_headers(third))

    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["data"]["parent_post_id"] == test_post.id


def test_deleting_a_repost_is_an_unrepost(client, db_session, test_post, other_auth_token) -> None:
    repost = client.post(f"/api/v1/posts/{test_post.id}/repost", headers=other_auth_token).json()["data"]

    response = client.delete(f"/api/v1/posts/{repost['id']}", headers=other_auth_token)

    assert response.status_code == status.HTTP_200_OK
    db_session.expire_all()
    assert db_session.get(Post, test_post.id).shares_count == 0


def test_unrepost_without_repost_is_not_found(client, test_post, other_auth_token) -> None:
    response = client.delete(f"/api/v1/posts/{test_post.id}/repost", headers=other_auth_token)
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_nested_comment_tree(client, db_session, test_post, test_user, other_user, auth_token, other_auth_token) -> None:
    c1 = client.post(
        "/api/v1/comments", json={"post_id": test_post.id, "content": "C1"}, headers=other_auth_token
    ).json()["data"]
    c2 = client.post(
        "/api/v1/comments",
        json={"post_id": test_post.id, "content": "C2", "parent_comment_id": c1["id"]},
        headers=auth_token,
    ).json()["data"]
    c3 = client.post(
        "/api/v1/comments",
        json={"post_id": test_post.id, "content": "C3", "parent_comment_id": c2["id"]},
        headers=other_auth_token,
    ).json()["data"]

    response = client.get(
        f"/api/v1/posts/{test_post.id}/comments", params={"tree": "true", "sort": "new"}, headers=auth_token
    )

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert "pagination" not in body
    [node1] = body["data"]
    assert node1["id"] == c1["id"]
    assert node1["replies_count"] == 1
    assert [r["id"] for r in node1["replies"]] == [c2["id"]]
    assert [r["id"] for r in node1["replies"][0]["replies"]] == [c3["id"]]

    post = client.get(f"/api/v1/posts/{test_post.id}", headers=auth_token).json()["data"]
    assert post["comments_count"] == 1
