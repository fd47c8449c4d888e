import json

import httpx

from backend.responder.models.correspondence_model import EmailCorrespondence
from backend.responder.routers.triage import get_llm_client
from backend.responder.main import app
from backend.responder.services.classifier import build_classify_prompt, classify_conversations, parse_results
from backend.responder.services import llm_client
from backend.responder.services.llm_client import LLMClient, LLMError
from backend.responder.schemas.triage import Category, ClassificationResult
from backend.tests.helpers import FakeLLM, upload


def _insights(n, category="ORDER_STATUS"):
    return json.dumps([
        {
            "category": category,
            "urgency": 7,
            "sentiment": "negative",
            "customerName": "Sam",
            "orderNumber": "#55555",
            "keyIssues": ["late delivery"],
            "suggestedTone": "apologetic",
            "similarityTags": ["shipping", "delay"],
        }
        for _ in range(n)
    ])


def test_classification_result_coerces_loose_output():
    r = ClassificationResult.model_validate({
        "category": "order status", "urgency": "12", "sentiment": "ANGRY",
        "orderNumber": " #123 ", "keyIssues": "refund", "suggestedTone": "",
    })
    assert r.category == Category.ORDER_STATUS
    assert r.urgency == 10
    assert r.sentiment == "neutral"
    assert r.order_number == "123"
    assert r.key_issues == ["refund"]
    assert r.suggested_tone == "professional"
    assert ClassificationResult.model_validate({"category": "nonsense"}).category == Category.OTHER


def test_parse_results_pads_and_defaults_bad_elements():
    text = 'Here you go:\n```json\n[{"category": "PRIORITY", "urgency": 9}, "junk"]\n```'
    results = parse_results(text, 3)
    (first, first_source), (second, second_source), (third, third_source) = results
    assert first.category == Category.PRIORITY and first.urgency == 9
    assert first_source == "ai"
    assert second == ClassificationResult() and second_source == "fallback"
    assert third.category == Category.OTHER and third.urgency == 5
    assert third_source == "fallback"


def test_prompt_truncates_body_and_carries_known_order_number():
    email = EmailCorrespondence(id=1, subject="S", from_email="a@x.com", message_text="x" * 50, order_number="4444")
    prompt = build_classify_prompt([email], body_chars=10)
    assert '"body": "xxxxxxxxxx..."' in prompt
    assert '"orderNumber": "4444"' in prompt


def test_batch_failure_is_isolated(client, headers, user, db):
    data = upload(client, headers, *[(str(1000 + i), f"c{i}@x.com", "Question", [f"message {i}"]) for i in range(30)])
    ids = data["email_ids"]
    emails = db.query(EmailCorrespondence).filter(EmailCorrespondence.id.in_(ids)).order_by(EmailCorrespondence.id).all()
    llm = FakeLLM([_insights(15), LLMError("boom")])

    classify_conversations(db, user, emails, llm, batch_size=15)

    assert len(llm.calls) == 2
    db.expire_all()
    first, second = emails[:15], emails[15:]
    assert all(e.category == "ORDER_STATUS" and e.urgency == 7 and e.insight_source == "ai" for e in first)
    assert all(e.similarity_tags == ["shipping", "delay"] for e in first)
    for e in second:
        assert e.category == "OTHER"
        assert e.urgency == 5
        assert e.sentiment == "neutral"
        assert e.key_issues == [] and e.similarity_tags == []
        assert e.suggested_tone == "professional"
        assert e.insight_source == "fallback"


def test_short_reply_labels_missing_elements_as_fallback(client, headers, user, db):
    data = upload(client, headers, ("1", "a@x.com", "Q", ["first question"]), ("2", "b@x.com", "Q", ["second question"]))
    emails = db.query(EmailCorrespondence).filter(EmailCorrespondence.id.in_(data["email_ids"])).order_by(EmailCorrespondence.id).all()
    classify_conversations(db, user, emails, FakeLLM([_insights(1)]))
    db.expire_all()
    assert emails[0].insight_source == "ai" and emails[0].category == "ORDER_STATUS"
    assert emails[1].insight_source == "fallback" and emails[1].category == "OTHER"


def test_gateway_page_degrades_each_batch_to_fallback(client, headers, user, db, monkeypatch):
    data = upload(client, headers, ("1", "a@x.com", "Q", ["first question"]), ("2", "b@x.com", "Q", ["second question"]))
    emails = db.query(EmailCorrespondence).filter(EmailCorrespondence.id.in_(data["email_ids"])).order_by(EmailCorrespondence.id).all()
    real_client = httpx.Client
    gateway = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway</html>"))
    monkeypatch.setattr(llm_client.httpx, "Client", lambda **kwargs: real_client(transport=gateway, **kwargs))

    classify_conversations(db, user, emails, LLMClient("anthropic", "k", "m"), batch_size=1)

    db.expire_all()
    assert [e.insight_source for e in emails] == ["fallback", "fallback"]
    assert all(e.category == "OTHER" and e.urgency == 5 for e in emails)


def test_extracted_fields_only_fill_gaps(client, headers, user, db):
    data = upload(client, headers, ("1", "a@x.com", "Order #12345", ["where is it"]), ("2", "b@x.com", "Hello", ["hi there friend"]))
    emails = db.query(EmailCorrespondence).filter(EmailCorrespondence.id.in_(data["email_ids"])).order_by(EmailCorrespondence.id).all()
    classify_conversations(db, user, emails, FakeLLM([_insights(2)]))
    db.expire_all()
    assert emails[0].order_number == "12345"
    assert emails[0].from_name == "Jane Doe"
    assert emails[1].order_number == "55555"


def test_classify_endpoint_groups_results(client, headers):
    data = upload(client, headers, *[(str(i), f"c{i}@x.com", "Q", [f"msg {i}"]) for i in range(3)])

    def reply(system, prompt, n):
        return json.dumps([
            {"category": "PRIORITY", "urgency": 3, "similarityTags": ["damaged"]},
            {"category": "NO_ACTION", "urgency": 1},
            {"category": "PRIORITY", "urgency": 9, "similarityTags": ["wrong item"]},
        ])

    app.dependency_overrides[get_llm_client] = lambda: FakeLLM(handler=reply)
    r = client.post("/api/responder/classify", json={"email_ids": data["email_ids"]}, headers=headers)
    assert r.status_code == 200, r.text
    groups = r.json()
    assert [g["type"] for g in groups] == ["PRIORITY", "NO_ACTION"]
    priority = groups[0]
    assert priority["is_expanded"] is True
    assert [e["urgency"] for e in priority["emails"]] == [9, 3]


def test_classify_without_llm_key_is_503(client, headers):
    data = upload(client, headers, ("1", "a@x.com", "Q", ["hello"]))
    r = client.post("/api/responder/classify", json={"email_ids": data["email_ids"]}, headers=headers)
    assert r.status_code == 503


def test_classify_other_users_ids_is_404(client, headers, make_user):
    data = upload(client, headers, ("1", "a@x.com", "Q", ["hello"]))
    intruder = make_user()
    app.dependency_overrides[get_llm_client] = lambda: FakeLLM([_insights(1)])
    r = client.post("/api/responder/classify", json={"email_ids": data["email_ids"]}, headers={"X-API-Key": intruder.api_key})
    assert r.status_code == 404
