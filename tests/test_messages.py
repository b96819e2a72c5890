"""
tests/test_messages.py -- Private messaging: routes, body storage, migration.

Coverage:
  - send -> conversation list (excerpt, unread) -> read (clears unread)
  - participant-only access, self-message 422, unknown recipient 404
  - Stored bodies go through object storage (MagicMock boto3 client)
  - A missing stored object renders as the placeholder
  - A failed message insert deletes the uploaded body object
  - Legacy rows without body_kind read back as stored
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from authenticator import bearer, register
from botocore.exceptions import ClientError
from fakes import fake_s3
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError

from messages.bodies import discard_body, make_excerpt, read_body, write_body
from messages.models import UNAVAILABLE_BODY, Inline, Stored
from messages.store import MessageStore
from storage.objects import ObjectStore


@pytest.fixture(scope="module")
def people(api_client: TestClient) -> dict[str, str]:
    """Tokens for three registered users."""
    return {name: register(api_client, name)[0] for name in ("ann", "ben", "cat")}


class TestSendAndRead:
    def test_conversation_flow(self, api_client: TestClient, people) -> None:
        sent = api_client.post(
            "/api/v1/messages",
            json={"recipient_username": "ben", "body": "<p>Hello <b>Ben</b></p>"},
            headers=bearer(people["ann"]),
        )
        assert sent.status_code == 201, sent.text
        conversation_id = sent.json()["conversation_id"]

        inbox = api_client.get("/api/v1/messages", headers=bearer(people["ben"])).json()
        row = next(c for c in inbox["data"] if c["id"] == conversation_id)
        assert row["partner_username"] == "ann"
        assert row["unread_count"] == 1
        assert row["last_message_excerpt"] == "Hello Ben"

        thread = api_client.get(f"/api/v1/messages/{conversation_id}", headers=bearer(people["ben"]))
        assert thread.status_code == 200
        assert [m["body"] for m in thread.json()["data"]] == ["<p>Hello <b>Ben</b></p>"]
        assert thread.json()["data"][0]["author_username"] == "ann"

        inbox = api_client.get("/api/v1/messages", headers=bearer(people["ben"])).json()
        assert next(c for c in inbox["data"] if c["id"] == conversation_id)["unread_count"] == 0

    def test_reply_reuses_conversation(self, api_client: TestClient, people) -> None:
        first = api_client.post(
            "/api/v1/messages", json={"recipient_username": "cat", "body": "hi"}, headers=bearer(people["ann"])
        ).json()
        reply = api_client.post(
            "/api/v1/messages", json={"recipient_username": "ann", "body": "hey"}, headers=bearer(people["cat"])
        ).json()
        assert first["conversation_id"] == reply["conversation_id"]

        thread = api_client.get(f"/api/v1/messages/{first['conversation_id']}", headers=bearer(people["ann"]))
        assert [m["body"] for m in thread.json()["data"]] == ["hi", "hey"]
        assert thread.json()["pagination"]["total"] == 2

    def test_non_participant_forbidden(self, api_client: TestClient, people) -> None:
        sent = api_client.post(
            "/api/v1/messages", json={"recipient_username": "ben", "body": "private"}, headers=bearer(people["ann"])
        ).json()
        resp = api_client.get(f"/api/v1/messages/{sent['conversation_id']}", headers=bearer(people["cat"]))
        assert resp.status_code == 403
        assert api_client.get("/api/v1/messages/999999", headers=bearer(people["cat"])).status_code == 403

    def test_self_message_rejected(self, api_client: TestClient, people) -> None:
        resp = api_client.post(
            "/api/v1/messages", json={"recipient_username": "ann", "body": "me"}, headers=bearer(people["ann"])
        )
        assert resp.status_code == 422

    def test_unknown_recipient(self, api_client: TestClient, people) -> None:
        resp = api_client.post(
            "/api/v1/messages", json={"recipient_username": "ghost", "body": "boo"}, headers=bearer(people["ann"])
        )
        assert resp.status_code == 404

    def test_requires_auth(self, api_client: TestClient) -> None:
        assert api_client.get("/api/v1/messages").status_code == 401


class TestObjectStorage:
    def test_stored_bodies_round_trip(self, api_client: TestClient, people) -> None:
        client, objects = fake_s3()
        api_client.app.state.objects = ObjectStore(client, "forum-bucket")
        try:
            sent = api_client.post(
                "/api/v1/messages", json={"recipient_username": "cat", "body": "in s3"}, headers=bearer(people["ben"])
            ).json()
            assert len(objects) == 1
            key = next(iter(objects))
            assert key.startswith("pm-body/")

            thread = api_client.get(f"/api/v1/messages/{sent['conversation_id']}", headers=bearer(people["cat"]))
            assert thread.json()["data"][-1]["body"] == "in s3"

            objects.clear()
            thread = api_client.get(f"/api/v1/messages/{sent['conversation_id']}", headers=bearer(people["cat"]))
            assert thread.status_code == 200
            assert thread.json()["data"][-1]["body"] == UNAVAILABLE_BODY
        finally:
            api_client.app.state.objects = None

    def test_failed_insert_deletes_stored_body(self, api_client: TestClient, people) -> None:
        client, objects = fake_s3()
        real_store = api_client.app.state.message_store
        failing = MagicMock(wraps=real_store)
        failing.add_message.side_effect = OperationalError("INSERT", {}, Exception("database is locked"))
        api_client.app.state.objects = ObjectStore(client, "forum-bucket")
        api_client.app.state.message_store = failing
        try:
            resp = api_client.post(
                "/api/v1/messages", json={"recipient_username": "cat", "body": "lost"}, headers=bearer(people["ben"])
            )
        finally:
            api_client.app.state.message_store = real_store
            api_client.app.state.objects = None
        assert resp.status_code == 503
        assert client.put_object.call_count == 1
        assert client.delete_object.call_count == 1
        assert objects == {}


class TestBodies:
    def test_excerpt_strips_tags_and_truncates(self) -> None:
        assert make_excerpt("<i>" + "x" * 80 + "</i>") == "x" * 50

    def test_write_inline_without_storage(self) -> None:
        assert write_body(None, "hello") == Inline("hello")

    def test_write_stored_with_storage(self) -> None:
        client, objects = fake_s3()
        body = write_body(ObjectStore(client, "b"), "hello")
        assert isinstance(body, Stored)
        assert objects[body.key] == b"hello"

    def test_stored_body_without_storage_is_unavailable(self) -> None:
        assert read_body(None, Stored("pm-body/x")) == UNAVAILABLE_BODY

    def test_storage_error_is_unavailable(self) -> None:
        client = MagicMock()
        client.get_object.side_effect = ClientError({"Error": {"Code": "AccessDenied"}}, "GetObject")
        assert read_body(ObjectStore(client, "b"), Stored("pm-body/x")) == UNAVAILABLE_BODY

    def test_discard_deletes_stored_object(self) -> None:
        client, objects = fake_s3()
        store = ObjectStore(client, "b")
        body = write_body(store, "hello")
        discard_body(store, body)
        client.delete_object.assert_called_once_with(Bucket="b", Key=body.key)
        assert objects == {}

    def test_discard_inline_is_noop(self) -> None:
        client = MagicMock()
        discard_body(ObjectStore(client, "b"), Inline("hello"))
        client.delete_object.assert_not_called()


class TestLegacyMigration:
    def test_rows_without_body_kind_become_stored(self, db_url) -> None:
        engine = create_engine(db_url)
        with engine.connect() as conn:
            conn.execute(
                text(
                    "CREATE TABLE private_messages ("
                    "id INTEGER PRIMARY KEY, conversation_id INTEGER NOT NULL, author_id VARCHAR(36) NOT NULL, "
                    "body TEXT NOT NULL, created_at VARCHAR(32) NOT NULL)"
                )
            )
            conn.execute(
                text(
                    "INSERT INTO private_messages (conversation_id, author_id, body, created_at) "
                    "VALUES (1, 'u1', 'pm-body/legacy', '2024-01-01T00:00:00+00:00')"
                )
            )
            conn.commit()
        engine.dispose()

        store = MessageStore(db_url=db_url)
        try:
            with store.engine.connect() as conn:
                kinds = conn.execute(text("SELECT body_kind, body FROM private_messages")).fetchall()
            assert [(k.body_kind, k.body) for k in kinds] == [("stored", "pm-body/legacy")]
            MessageStore(db_url=db_url).close()  # second startup: column already present
        finally:
            store.close()
