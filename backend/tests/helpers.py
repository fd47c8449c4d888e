import base64

from backend.responder.services.llm_client import LLMError
from backend.responder.services.mailer import MailSendError


class FakeLLM:
    """Replays scripted replies; an Exception instance in the script is raised instead."""

    def __init__(self, replies=None, handler=None):
        self.replies = list(replies or [])
        self.handler = handler
        self.calls = []

    def complete(self, system, prompt, max_tokens=None):
        self.calls.append({"system": system, "prompt": prompt, "max_tokens": max_tokens})
        if self.handler is not None:
            return self.handler(system, prompt, len(self.calls))
        if not self.replies:
            raise LLMError("no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeTransport:
    def __init__(self, fail_for=None):
        self.fail_for = set(fail_for or [])
        self.sent = []

    @staticmethod
    def decode(raw):
        return base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4)).decode()

    def send(self, raw):
        if any(marker in self.decode(raw) for marker in self.fail_for):
            raise MailSendError("Invalid recipient")
        self.sent.append(raw)
        return f"msg-{len(self.sent)}"


def export_rows(*tickets):
    """Export rows for tickets given as (ticket_id, email, subject, [messages])."""
    rows = []
    for ticket_id, email, subject, messages in tickets:
        for i, text in enumerate(messages):
            row = {"Message text": text, "Sender type": "contact"}
            if i == 0:
                row.update({
                    "Ticket id": ticket_id,
                    "Conversation id": f"<{ticket_id}@mail.example.com>",
                    "Subject": subject,
                    "Customer email": email,
                    "Customer name": "Jane Doe",
                })
            rows.append(row)
    return rows


def upload(client, headers, *tickets):
    r = client.post("/api/responder/upload", json={"emails": export_rows(*tickets)}, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()
