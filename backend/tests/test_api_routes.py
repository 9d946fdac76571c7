import unittest

from fastapi.testclient import TestClient

from app.api.deps import get_key_value_store
from app.core.security import create_access_token, verify_password
from app.db import models
from app.db.session import get_db
from app.main import api_app
from app.services.presence_service import MemoryKeyValueStore, reset_code_key
from tests.support import add_discussion, add_user, make_session_factory


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        self.store = MemoryKeyValueStore()

        def override_get_db():
            db = self.session_factory()
            try:
                yield db
            finally:
                db.close()

        api_app.dependency_overrides[get_db] = override_get_db
        api_app.dependency_overrides[get_key_value_store] = lambda: self.store
        self.client = TestClient(api_app)

    def tearDown(self) -> None:
        api_app.dependency_overrides.clear()

    def auth_headers(self, user: models.User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}


class HealthRouteTests(ApiTestCase):
    def test_health(self) -> None:
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})


class AuthRouteTests(ApiTestCase):
    def test_register_login_and_me(self) -> None:
        register = self.client.post(
            "/api/auth/register",
            json={"email": "Bob@Example.com", "nickname": "bob", "password": "password123"},
        )
        self.assertEqual(register.status_code, 201)
        self.assertEqual(register.json()["email"], "bob@example.com")

        login = self.client.post(
            "/api/auth/login",
            json={"email": "bob@example.com", "password": "password123"},
        )
        self.assertEqual(login.status_code, 200)
        body = login.json()
        self.assertEqual(body["nickname"], "bob")
        self.assertEqual(body["token_type"], "bearer")
        self.assertIn("accessToken", login.cookies)

        me = self.client.get("/api/auth/me")
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["nickname"], "bob")

    def test_register_rejects_duplicates(self) -> None:
        add_user(self.session_factory, "bob")

        same_email = self.client.post(
            "/api/auth/register",
            json={"email": "bob@example.com", "nickname": "robert", "password": "password123"},
        )
        same_nickname = self.client.post(
            "/api/auth/register",
            json={"email": "robert@example.com", "nickname": "bob", "password": "password123"},
        )

        self.assertEqual(same_email.status_code, 409)
        self.assertEqual(same_nickname.status_code, 409)

    def test_login_with_wrong_password(self) -> None:
        add_user(self.session_factory, "bob")

        with self.assertLogs("app.api.routes.auth", level="WARNING"):
            response = self.client.post(
                "/api/auth/login",
                json={"email": "bob@example.com", "password": "wrong-password"},
            )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["detail"], "Invalid credentials")

    def test_me_requires_valid_token(self) -> None:
        self.assertEqual(self.client.get("/api/auth/me").json()["detail"], "Not authenticated")
        response = self.client.get("/api/auth/me", headers={"Authorization": "Bearer broken"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["detail"], "Invalid or expired token")

    def test_logout_clears_cookie(self) -> None:
        response = self.client.post("/api/auth/logout")
        self.assertEqual(response.status_code, 204)
        self.assertIn("accessToken", response.headers.get("set-cookie", ""))

    def test_availability_checks(self) -> None:
        add_user(self.session_factory, "bob")

        taken_email = self.client.get("/api/auth/check-email", params={"email": "BOB@example.com"})
        free_email = self.client.get("/api/auth/check-email", params={"email": "new@example.com"})
        taken_nickname = self.client.get("/api/auth/check-nickname", params={"nickname": "bob"})

        self.assertFalse(taken_email.json()["available"])
        self.assertTrue(free_email.json()["available"])
        self.assertFalse(taken_nickname.json()["available"])


class PasswordResetRouteTests(ApiTestCase):
    def test_reset_flow_issues_new_password(self) -> None:
        user = add_user(self.session_factory, "bob")

        with self.assertLogs("app.services.auth_service", level="INFO"):
            request = self.client.post(
                "/api/auth/password-reset/request", json={"email": "bob@example.com"}
            )
        self.assertEqual(request.status_code, 200)

        key = reset_code_key("bob@example.com")
        code = self.store._values[key][0]
        confirm = self.client.post(
            "/api/auth/password-reset/confirm",
            json={"email": "bob@example.com", "code": code.lower()},
        )

        self.assertEqual(confirm.status_code, 200)
        new_password = confirm.json()["password"]
        db = self.session_factory()
        try:
            refreshed = db.get(models.User, user.id)
            self.assertTrue(verify_password(new_password, refreshed.hashed_password))
        finally:
            db.close()

        reused = self.client.post(
            "/api/auth/password-reset/confirm",
            json={"email": "bob@example.com", "code": code},
        )
        self.assertEqual(reused.status_code, 400)

    def test_unknown_email_gets_same_response(self) -> None:
        response = self.client.post(
            "/api/auth/password-reset/request", json={"email": "ghost@example.com"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.store._values, {})

    def test_wrong_code_is_rejected(self) -> None:
        add_user(self.session_factory, "bob")
        self.store._values[reset_code_key("bob@example.com")] = ("ABC123", None)

        response = self.client.post(
            "/api/auth/password-reset/confirm",
            json={"email": "bob@example.com", "code": "ZZZ999"},
        )

        self.assertEqual(response.status_code, 400)


class UserRouteTests(ApiTestCase):
    def test_update_nickname(self) -> None:
        bob = add_user(self.session_factory, "bob")
        add_user(self.session_factory, "carol")

        renamed = self.client.patch(
            "/api/users/me", json={"nickname": "bobby"}, headers=self.auth_headers(bob)
        )
        taken = self.client.patch(
            "/api/users/me", json={"nickname": "carol"}, headers=self.auth_headers(bob)
        )

        self.assertEqual(renamed.json()["nickname"], "bobby")
        self.assertEqual(taken.status_code, 409)

    def test_delete_account(self) -> None:
        bob = add_user(self.session_factory, "bob")
        headers = self.auth_headers(bob)

        response = self.client.delete("/api/users/me", headers=headers)

        self.assertEqual(response.status_code, 204)
        self.assertEqual(self.client.get("/api/auth/me", headers=headers).json()["detail"], "User not found")

    def test_change_password(self) -> None:
        bob = add_user(self.session_factory, "bob")

        response = self.client.patch(
            "/api/users/me/password", json={"password": "new-password-1"}, headers=self.auth_headers(bob)
        )
        too_short = self.client.patch(
            "/api/users/me/password", json={"password": "short"}, headers=self.auth_headers(bob)
        )

        self.assertEqual(response.status_code, 204)
        self.assertEqual(too_short.status_code, 422)
        login = self.client.post(
            "/api/auth/login", json={"email": "bob@example.com", "password": "new-password-1"}
        )
        self.assertEqual(login.status_code, 200)

    def test_block_and_unblock(self) -> None:
        bob = add_user(self.session_factory, "bob")
        carol = add_user(self.session_factory, "carol")
        headers = self.auth_headers(bob)

        created = self.client.post("/api/users/me/blocks", json={"user_id": carol.id}, headers=headers)
        duplicate = self.client.post("/api/users/me/blocks", json={"user_id": carol.id}, headers=headers)
        missing = self.client.post("/api/users/me/blocks", json={"user_id": "0" * 32}, headers=headers)
        own = self.client.post("/api/users/me/blocks", json={"user_id": bob.id}, headers=headers)
        listed = self.client.get("/api/users/me/blocks", headers=headers)

        self.assertEqual(created.status_code, 201)
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(own.status_code, 400)
        self.assertEqual([user["nickname"] for user in listed.json()], ["carol"])

        removed = self.client.delete(f"/api/users/me/blocks/{carol.id}", headers=headers)
        again = self.client.delete(f"/api/users/me/blocks/{carol.id}", headers=headers)
        self.assertEqual(removed.status_code, 204)
        self.assertEqual(again.status_code, 404)

    def test_follow_neighbors(self) -> None:
        bob = add_user(self.session_factory, "bob")
        carol = add_user(self.session_factory, "carol")
        headers = self.auth_headers(bob)

        created = self.client.post("/api/users/me/neighbors", json={"user_id": carol.id}, headers=headers)
        duplicate = self.client.post("/api/users/me/neighbors", json={"user_id": carol.id}, headers=headers)
        listed = self.client.get("/api/users/me/neighbors", headers=headers)

        self.assertEqual(created.status_code, 201)
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual([user["nickname"] for user in listed.json()], ["carol"])
        self.assertEqual(
            self.client.delete(f"/api/users/me/neighbors/{carol.id}", headers=headers).status_code, 204
        )

    def test_delete_account_removes_authored_content(self) -> None:
        alice = add_user(self.session_factory, "alice")
        bob = add_user(self.session_factory, "bob")
        discussion = add_discussion(self.session_factory, bob)
        own_post = self.client.post(
            "/api/posts", json={"title": "Mine", "categories": ["news"]}, headers=self.auth_headers(bob)
        ).json()
        other_post = self.client.post(
            "/api/posts", json={"title": "Theirs"}, headers=self.auth_headers(alice)
        ).json()
        self.client.post(f"/api/posts/{other_post['id']}/like", headers=self.auth_headers(bob))
        self.client.post("/api/users/me/neighbors", json={"user_id": bob.id}, headers=self.auth_headers(alice))

        response = self.client.delete("/api/users/me", headers=self.auth_headers(bob))

        self.assertEqual(response.status_code, 204)
        self.assertEqual(self.client.get(f"/api/posts/{own_post['id']}").status_code, 404)
        self.assertEqual(self.client.get(f"/api/discussions/{discussion.id}").status_code, 404)
        self.assertEqual(self.client.get(f"/api/posts/{other_post['id']}").json()["like_count"], 0)
        self.assertEqual(self.client.get("/api/users/me/neighbors", headers=self.auth_headers(alice)).json(), [])
        db = self.session_factory()
        try:
            self.assertEqual(db.query(models.PostCategory).count(), 0)
            self.assertEqual(db.query(models.DiscussionUser).count(), 0)
        finally:
            db.close()


class DiscussionRouteTests(ApiTestCase):
    def test_create_and_read_discussion(self) -> None:
        alice = add_user(self.session_factory, "alice")

        created = self.client.post(
            "/api/discussions",
            json={"title": " Roadmap ", "progress": {"step": 1}},
            headers=self.auth_headers(alice),
        )

        self.assertEqual(created.status_code, 201)
        body = created.json()
        self.assertEqual(body["title"], "Roadmap")
        self.assertEqual(body["author_id"], alice.id)
        fetched = self.client.get(f"/api/discussions/{body['id']}")
        self.assertEqual(fetched.json()["progress"], {"step": 1})

    def test_only_author_can_update(self) -> None:
        alice = add_user(self.session_factory, "alice")
        bob = add_user(self.session_factory, "bob")
        discussion = add_discussion(self.session_factory, alice)

        forbidden = self.client.patch(
            f"/api/discussions/{discussion.id}",
            json={"title": "Hijacked"},
            headers=self.auth_headers(bob),
        )
        allowed = self.client.patch(
            f"/api/discussions/{discussion.id}",
            json={"title": "Renamed"},
            headers=self.auth_headers(alice),
        )

        self.assertEqual(forbidden.status_code, 403)
        self.assertEqual(allowed.json()["title"], "Renamed")

    def test_missing_discussion(self) -> None:
        self.assertEqual(self.client.get("/api/discussions/missing").status_code, 404)


class PostRouteTests(ApiTestCase):
    def _create_post(self, user: models.User, title: str, **extra) -> dict:
        response = self.client.post(
            "/api/posts",
            json={"title": title, "content": "body", **extra},
            headers=self.auth_headers(user),
        )
        self.assertEqual(response.status_code, 201)
        return response.json()

    def test_create_post_with_categories_and_images(self) -> None:
        alice = add_user(self.session_factory, "alice")

        post = self._create_post(
            alice,
            "Hello",
            categories=["news", "news", " tips "],
            images=["a.png", "b.png"],
        )

        self.assertEqual(sorted(post["categories"]), ["news", "tips"])
        self.assertEqual(post["images"], ["a.png", "b.png"])
        self.assertEqual(post["nickname"], "alice")

    def test_long_categories_are_deduplicated_after_truncation(self) -> None:
        alice = add_user(self.session_factory, "alice")

        post = self._create_post(alice, "Hello", categories=["x" * 40 + "a", "x" * 40 + "b"])

        self.assertEqual(post["categories"], ["x" * 40])

    def test_neighbor_feed_lists_followed_authors_only(self) -> None:
        alice = add_user(self.session_factory, "alice")
        bob = add_user(self.session_factory, "bob")
        carol = add_user(self.session_factory, "carol")
        self._create_post(bob, "From bob")
        self._create_post(carol, "From carol")
        self.client.post("/api/users/me/neighbors", json={"user_id": bob.id}, headers=self.auth_headers(alice))

        feed = self.client.get("/api/posts", params={"order": "neighbor"}, headers=self.auth_headers(alice))
        anonymous = self.client.get("/api/posts", params={"order": "neighbor"})

        self.assertEqual([post["title"] for post in feed.json()["posts"]], ["From bob"])
        self.assertEqual(anonymous.status_code, 401)

    def test_blocked_authors_are_hidden_from_listing(self) -> None:
        alice = add_user(self.session_factory, "alice")
        bob = add_user(self.session_factory, "bob")
        self._create_post(alice, "From alice")
        self._create_post(bob, "From bob")
        self.client.post("/api/users/me/blocks", json={"user_id": bob.id}, headers=self.auth_headers(alice))

        listing = self.client.get("/api/posts", headers=self.auth_headers(alice))
        public = self.client.get("/api/posts")

        self.assertEqual([post["title"] for post in listing.json()["posts"]], ["From alice"])
        self.assertEqual(len(public.json()["posts"]), 2)

    def test_reading_post_counts_views(self) -> None:
        alice = add_user(self.session_factory, "alice")
        post = self._create_post(alice, "Hello")

        self.client.get(f"/api/posts/{post['id']}")
        second = self.client.get(f"/api/posts/{post['id']}")

        self.assertEqual(second.json()["view_count"], 2)

    def test_pagination_and_ordering(self) -> None:
        alice = add_user(self.session_factory, "alice")
        popular = self._create_post(alice, "Popular")
        self._create_post(alice, "Quiet")
        self._create_post(alice, "Other")
        self.client.get(f"/api/posts/{popular['id']}")

        first_page = self.client.get("/api/posts", params={"page": 1, "page_size": 2, "order": "views"})
        second_page = self.client.get("/api/posts", params={"page": 2, "page_size": 2, "order": "views"})
        invalid = self.client.get("/api/posts", params={"order": "random"})

        self.assertEqual(first_page.json()["posts"][0]["title"], "Popular")
        self.assertTrue(first_page.json()["has_more"])
        self.assertEqual(len(second_page.json()["posts"]), 1)
        self.assertFalse(second_page.json()["has_more"])
        self.assertEqual(invalid.status_code, 400)

    def test_like_and_bookmark_toggles(self) -> None:
        alice = add_user(self.session_factory, "alice")
        bob = add_user(self.session_factory, "bob")
        post = self._create_post(alice, "Hello")
        headers = self.auth_headers(bob)

        liked = self.client.post(f"/api/posts/{post['id']}/like", headers=headers).json()
        detail = self.client.get(f"/api/posts/{post['id']}", headers=headers).json()
        cancelled = self.client.post(f"/api/posts/{post['id']}/like", headers=headers).json()
        bookmarked = self.client.post(f"/api/posts/{post['id']}/bookmark", headers=headers).json()
        removed = self.client.post(f"/api/posts/{post['id']}/bookmark", headers=headers).json()

        self.assertEqual((liked["action"], liked["like_count"]), ("like", 1))
        self.assertTrue(detail["liked"])
        self.assertEqual((cancelled["action"], cancelled["like_count"]), ("cancel", 0))
        self.assertEqual(bookmarked["action"], "add")
        self.assertEqual(removed["action"], "remove")

    def test_only_author_can_edit_or_delete(self) -> None:
        alice = add_user(self.session_factory, "alice")
        bob = add_user(self.session_factory, "bob")
        post = self._create_post(alice, "Hello", images=["a.png"])

        forbidden_edit = self.client.patch(
            f"/api/posts/{post['id']}", json={"title": "Mine"}, headers=self.auth_headers(bob)
        )
        forbidden_delete = self.client.delete(f"/api/posts/{post['id']}", headers=self.auth_headers(bob))
        edited = self.client.patch(
            f"/api/posts/{post['id']}",
            json={"images": ["c.png"]},
            headers=self.auth_headers(alice),
        )
        deleted = self.client.delete(f"/api/posts/{post['id']}", headers=self.auth_headers(alice))

        self.assertEqual(forbidden_edit.status_code, 403)
        self.assertEqual(forbidden_delete.status_code, 403)
        self.assertEqual(edited.json()["images"], ["c.png"])
        self.assertEqual(deleted.status_code, 204)
        self.assertEqual(self.client.get(f"/api/posts/{post['id']}").status_code, 404)


if __name__ == "__main__":
    unittest.main()
