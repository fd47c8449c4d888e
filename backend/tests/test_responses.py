import httpx
import pytest

from backend.responder.main import app
from backend.responder.routers.triage import get_transport_factory
from backend.responder.services import mailer
from backend.responder.services.correspondence_service import list_owned_emails
from backend.responder.services.mailer import GmailTransport, MailSendError, build_reply, bulk_send, encode_message, transport_for
from backend.responder.models.correspondence_model import EmailCorrespondence
from backend.tests.helpers import FakeTransport, upload


def test_save_response_marks_edited_and_is_idempotent(client, headers):
    email_id = upload(client, headers, ("1", "a@x.com", "Q", ["hello"]))["email_ids"][0]
    for _ in range(2):
        r = client.post("/api/responder/save-response", json={"emailId": email_id, "response": "Hi Jane"}, headers=headers)
        assert r.status_code == 200
        assert r.json()["is_edited"] is True
        assert r.json()["auto_response"] == "Hi Jane"


def test_save_response_for_someone_elses_conversation_is_404(client, headers, make_user):
    email_id = upload(client, headers, ("1", "a@x.com", "Q", ["hello"]))["email_ids"][0]
    other = make_user()
    r = client.post("/api/responder/save-response", json={"email_id": email_id, "response": "x"}, headers={"X-API-Key": other.api_key})
    assert r.status_code == 404
    assert client.get(f"/api/responder/emails/{email_id}", headers={"X-API-Key": other.api_key}).status_code == 404


def test_comments_lifecycle(client, headers, make_user):
    email_id = upload(client, headers, ("1", "a@x.com", "Q", ["hello"]))["email_ids"][0]
    for text in ("first", "second"):
        r = client.post("/api/responder/comments", json={"email_id": email_id, "content": text}, headers=headers)
        assert r.status_code == 200
        assert r.json()["is_internal"] is True
    listed = client.get(f"/api/responder/comments?email_id={email_id}", headers=headers).json()
    assert [c["content"] for c in listed] == ["first", "second"]
    assert listed[0]["user"]["name"] == "Agent"

    other = make_user()
    other_headers = {"X-API-Key": other.api_key}
    assert client.get(f"/api/responder/comments?email_id={email_id}", headers=other_headers).status_code == 404
    assert client.post("/api/responder/comments", json={"email_id": email_id, "content": "x"}, headers=other_headers).status_code == 404
    assert client.delete(f"/api/responder/comments?comment_id={listed[0]['id']}", headers=other_headers).status_code == 404

    assert client.delete(f"/api/responder/comments?comment_id={listed[0]['id']}", headers=headers).status_code == 200
    remaining = client.get(f"/api/responder/comments?email_id={email_id}", headers=headers).json()
    assert [c["content"] for c in remaining] == ["second"]


def test_reply_message_threads_on_conversation():
    email = EmailCorrespondence(from_email="jane@x.com", subject="Broken strap", conversation_id="<abc@mail>")
    raw = encode_message(build_reply(email, "We are sending a new one."))
    assert "=" not in raw and "+" not in raw and "/" not in raw
    decoded = FakeTransport.decode(raw)
    assert "To: jane@x.com" in decoded
    assert "Subject: Re: Broken strap" in decoded
    assert "In-Reply-To: <abc@mail>" in decoded
    assert "References: <abc@mail>" in decoded
    assert "We are sending a new one." in decoded


def test_bulk_reply_collects_per_item_errors(client, make_user):
    sender = make_user(mail_access_token="token")
    headers = {"X-API-Key": sender.api_key}
    data = upload(client, headers,
                  ("1", "ok@x.com", "Q", ["hello"]),
                  ("2", "bounce@x.com", "Q", ["hello"]),
                  ("3", "nodraft@x.com", "Q", ["hello"]))
    ok_id, bounce_id, nodraft_id = data["email_ids"]
    for email_id in (ok_id, bounce_id):
        client.post("/api/responder/save-response", json={"email_id": email_id, "response": "Thanks!"}, headers=headers)

    transport = FakeTransport(fail_for={"bounce@x.com"})
    app.dependency_overrides[get_transport_factory] = lambda: (lambda user: transport)
    r = client.post("/api/responder/bulk-reply", json={"email_ids": data["email_ids"]}, headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["sent"] == 1 and body["failed"] == 2 and body["success"] is True
    assert {e["email_id"] for e in body["errors"]} == {bounce_id, nodraft_id}
    assert len(transport.sent) == 1

    detail = client.get(f"/api/responder/emails/{ok_id}", headers=headers).json()
    assert detail["needs_action"] is False and detail["sent_at"] is not None
    assert client.get(f"/api/responder/emails/{bounce_id}", headers=headers).json()["needs_action"] is True


def test_bulk_send_continues_past_unbuildable_reply(client, db, make_user):
    sender = make_user(mail_access_token="token")
    headers = {"X-API-Key": sender.api_key}
    data = upload(client, headers, ("1", "a@x.com", "Q", ["hello"]), ("2", "b@x.com", "Q", ["hello"]))
    broken, fine = list_owned_emails(db, sender.id, data["email_ids"])
    broken.subject = "Broken\nitem"
    db.commit()

    transport = FakeTransport()
    outcome = bulk_send(db, sender, [broken, fine], transport, custom_message="On its way")

    assert [e["email_id"] for e in outcome.errors] == [broken.id]
    assert [r["email_id"] for r in outcome.results] == [fine.id]
    assert len(transport.sent) == 1
    assert outcome.as_dict()["success"] is True
    assert broken.needs_action is True and fine.needs_action is False


def test_bulk_reply_custom_message_overrides_draft(client, make_user):
    sender = make_user(mail_access_token="token")
    headers = {"X-API-Key": sender.api_key}
    data = upload(client, headers, ("1", "a@x.com", "Q", ["hello"]))
    transport = FakeTransport()
    app.dependency_overrides[get_transport_factory] = lambda: (lambda user: transport)
    r = client.post("/api/responder/bulk-reply", json={"emailIds": data["email_ids"], "customMessage": "Shipped today"}, headers=headers)
    assert r.json()["sent"] == 1
    decoded = FakeTransport.decode(transport.sent[0])
    assert "Shipped today" in decoded


def test_bulk_reply_error_statuses(client, headers):
    assert client.post("/api/responder/bulk-reply", json={"email_ids": []}, headers=headers).status_code == 400
    assert client.post("/api/responder/bulk-reply", json={"email_ids": [987654]}, headers=headers).status_code == 404
    data = upload(client, headers, ("1", "a@x.com", "Q", ["hello"]))
    r = client.post("/api/responder/bulk-reply", json={"email_ids": data["email_ids"], "custom_message": "x"}, headers=headers)
    assert r.status_code == 403


def test_transport_for_linked_account():
    class U:
        mail_access_token = "tok"
    assert isinstance(transport_for(U()), GmailTransport)


def test_gmail_transport_non_json_success_is_a_send_error(monkeypatch):
    real_client = httpx.Client
    proxy = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>proxy</html>"))
    monkeypatch.setattr(mailer.httpx, "Client", lambda **kwargs: real_client(transport=proxy, **kwargs))
    with pytest.raises(MailSendError, match="gmail_bad_response"):
        GmailTransport("tok").send("cmF3")
