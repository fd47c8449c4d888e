from backend.responder.services.ingest import RawRow, normalize_row, normalize_rows, read_csv_rows
from backend.responder.services.noise_filter import is_spam_or_system_ticket, is_system_message
from backend.responder.services.reconstruct import THREAD_SEPARATOR, reconstruct_tickets
from backend.responder.services.correspondence_service import extract_order_number


def test_normalize_accepts_export_and_camel_case_headers():
    a = normalize_row({"Ticket id": " 101 ", "Customer email": "a@x.com", "Message text": "  hi  "})
    b = normalize_row({"ticketId": "101", "customerEmail": "a@x.com", "messageText": "  hi  "})
    assert a.ticket_id == b.ticket_id == "101"
    assert a.customer_email == "a@x.com"
    # body whitespace is preserved
    assert a.message_text == "  hi  "
    assert a.subject == "" and a.sender_type == ""


def test_normalize_first_non_empty_alias_wins():
    row = normalize_row({"Ticket id": "", "ticketId": "202", "Subject": None})
    assert row.ticket_id == "202"
    assert row.subject == ""


def test_normalize_rows_keeps_order_and_tolerates_junk():
    rows = normalize_rows([{"Ticket id": "1"}, "not a row", {"Message text": "x"}])
    assert [r.ticket_id for r in rows] == ["1", "", ""]
    assert rows[1] == RawRow()


def test_read_csv_rows(tmp_path):
    path = tmp_path / "export.csv"
    path.write_text("\ufeffTicket id,Customer email,Message text\n7,a@x.com,hello\n,,again\n", encoding="utf-8")
    rows = normalize_rows(read_csv_rows(str(path)))
    assert [r.ticket_id for r in rows] == ["7", ""]
    assert rows[1].message_text == "again"


def _row(**kw):
    base = {"sender_type": "contact"}
    base.update(kw)
    return RawRow(**base)


def test_reconstruct_joins_continuation_rows_in_order():
    rows = [
        _row(ticket_id="1", customer_email="a@x.com", subject="Help", message_text="first"),
        _row(message_text="second"),
        _row(ticket_id="2", customer_email="b@x.com", subject="Other", message_text="only"),
        _row(message_text="third"),
    ]
    result = reconstruct_tickets(rows)
    assert [t.ticket_id for t in result.tickets] == ["1", "2"]
    assert result.tickets[0].message_text == "first" + THREAD_SEPARATOR + "second"
    assert result.tickets[1].message_text == "only" + THREAD_SEPARATOR + "third"


def test_reconstruct_drops_tickets_without_customer_messages():
    rows = [
        _row(ticket_id="1", customer_email="a@x.com", message_text=""),
        _row(sender_type="agent", message_text="We are on it"),
        _row(ticket_id="2", customer_email="b@x.com", message_text="real"),
    ]
    result = reconstruct_tickets(rows)
    assert [t.ticket_id for t in result.tickets] == ["2"]
    assert result.stats.empty_tickets == 1
    assert result.stats.system_messages == 1
    assert result.stats.filtered == 1


def test_reconstruct_discards_rows_of_spam_ticket():
    rows = [
        _row(ticket_id="1", customer_email="a@x.com", message_text="keep"),
        _row(ticket_id="2", customer_email="noreply@shop.com", message_text="promo"),
        _row(message_text="more promo"),
        _row(ticket_id="3", customer_email="c@x.com", message_text="also keep"),
    ]
    result = reconstruct_tickets(rows)
    assert [t.ticket_id for t in result.tickets] == ["1", "3"]
    assert result.tickets[0].messages == ["keep"]
    assert result.stats.spam_tickets == 1


def test_reconstruct_orphan_rows_before_first_ticket():
    result = reconstruct_tickets([_row(message_text="stray"), _row(ticket_id="1", customer_email="a@x.com", message_text="hi")])
    assert result.stats.orphan_rows == 1
    assert len(result.tickets) == 1


def test_conversation_id_falls_back_to_ticket_id():
    result = reconstruct_tickets([_row(ticket_id="9", customer_email="a@x.com", message_text="hi")])
    ticket = result.tickets[0]
    assert ticket.conversation_id == "9"
    assert ticket.subject == "No Subject"


def test_noise_filter_ticket_level():
    assert is_spam_or_system_ticket(RawRow(customer_email="no-reply@store.com"))
    assert is_spam_or_system_ticket(RawRow(customer_email="a@x.com", subject="Jane left a 5 star review"))
    assert is_spam_or_system_ticket(RawRow(customer_email="a@x.com", subject="Elastic bands is low in stock"))
    assert is_spam_or_system_ticket(RawRow(customer_email="not-an-address"))
    assert not is_spam_or_system_ticket(RawRow(customer_email="jane@x.com", subject="Where is my order?"))


def test_noise_filter_message_level_is_conservative():
    # unknown human sender without role metadata is kept
    assert not is_system_message(RawRow(sender_name="Jane Doe", message_text="Where is my parcel?"))
    assert is_system_message(RawRow(sender_name="AIAgent", message_text="hello"))
    assert is_system_message(RawRow(message_text="Auto-labels added: shipping"))
    assert is_system_message(RawRow(sender_type="agent", message_text="hi"))
    assert not is_system_message(RawRow(sender_type="Contact", sender_name="AIAgent", message_text="hi"))


def test_order_number_precedence():
    assert extract_order_number("Order #12345 not #9999") == "12345"
    assert extract_order_number("my order 4567 is late") == "4567"
    assert extract_order_number("ref 123456 please") == "123456"
    assert extract_order_number("call 555-1234") is None
    assert extract_order_number("") is None
