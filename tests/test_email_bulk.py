import pytest

from conftest import RecordingSender
from email_bulk import (
    BulkEmailDispatcher,
    Recipient,
    TargetGroup,
    derive_text_from_html,
    parse_target_group,
    render_email_template,
)
from models import CommunicationLog, CommunicationStatus


def _recipients(count):
    return [
        Recipient(email=f"user{i}@x.com", name=f"User {i}", team_id=i, member_id=i, team_name=f"Team {i}")
        for i in range(1, count + 1)
    ]


def test_one_failure_does_not_stop_the_batch(db):
    sender = RecordingSender(fail_for={"user3@x.com"})
    sleeps = []
    dispatcher = BulkEmailDispatcher(sender=sender, delay_seconds=0.6, sleep=sleeps.append)

    result = dispatcher.dispatch(db, _recipients(5), "Hello {{name}}", "<p>Hi {{name}}</p>")

    assert (result.sent, result.failed, result.total) == (4, 1, 5)
    assert [call["to"] for call in sender.sent] == [f"user{i}@x.com" for i in range(1, 6)]
    assert result.errors == [{"email": "user3@x.com", "error": "relay rejected user3@x.com"}]
    assert sleeps == [0.6] * 5


def test_each_attempt_is_logged(db):
    sender = RecordingSender(fail_for={"user2@x.com"})
    dispatcher = BulkEmailDispatcher(sender=sender, delay_seconds=0)

    dispatcher.dispatch(db, _recipients(2), "Hi {{teamName}}", "<p>{{name}}</p>", template_name="reminder")

    logs = db.query(CommunicationLog).order_by(CommunicationLog.id).all()
    assert [(log.recipient_email, log.status) for log in logs] == [
        ("user1@x.com", CommunicationStatus.SENT),
        ("user2@x.com", CommunicationStatus.FAILED),
    ]
    assert logs[0].subject == "Hi Team 1"
    assert logs[0].template_name == "reminder"
    assert logs[0].team_id == 1
    assert logs[0].sent_at is not None
    assert logs[1].failed_at is not None
    assert logs[1].error_message == "relay rejected user2@x.com"


def test_reported_errors_are_capped(db):
    recipients = _recipients(12)
    sender = RecordingSender(fail_for={r.email for r in recipients})
    dispatcher = BulkEmailDispatcher(sender=sender, delay_seconds=0, error_limit=10)

    result = dispatcher.dispatch(db, recipients, "s", "<p>h</p>")

    assert result.failed == 12
    assert len(result.errors) == 10
    assert db.query(CommunicationLog).count() == 12


def test_no_sleep_when_delay_disabled(db):
    sleeps = []
    dispatcher = BulkEmailDispatcher(sender=RecordingSender(), delay_seconds=0, sleep=sleeps.append)

    dispatcher.dispatch(db, _recipients(3), "s", "<p>h</p>")

    assert sleeps == []


def test_empty_recipient_list_sends_nothing(db):
    sender = RecordingSender()
    result = BulkEmailDispatcher(sender=sender, delay_seconds=0).dispatch(db, [], "s", "<p>h</p>")

    assert result.stats() == {"sent": 0, "failed": 0, "total": 0}
    assert sender.sent == []


def test_render_replaces_known_placeholders():
    context = {"name": "Asha", "email": "asha@x.com", "team_name": "Alpha"}
    template = "{{name}} / {{ EMAIL }} / {{teamName}} / {{team_name}} / {{unknown}}"

    assert render_email_template(template, context, html_mode=False) == (
        "Asha / asha@x.com / Alpha / Alpha / {{unknown}}"
    )


def test_render_escapes_values_in_html_mode():
    context = {"name": "<b>Tom & Jerry</b>", "email": "", "team_name": None}

    assert render_email_template("<p>{{name}}{{teamName}}</p>", context, html_mode=True) == (
        "<p>&lt;b&gt;Tom &amp; Jerry&lt;/b&gt;</p>"
    )
    assert render_email_template("", context, html_mode=True) == ""


def test_html_body_is_personalised_and_has_text_alternative(db):
    sender = RecordingSender()
    recipient = Recipient(email="a@x.com", name="O'Neil", team_name="Alpha")

    BulkEmailDispatcher(sender=sender, delay_seconds=0).dispatch(
        db, [recipient], "Hi {{name}}", "<style>p{}</style><p>Hello {{name}}</p><p>Team {{teamName}}</p>"
    )

    call = sender.sent[0]
    assert call["subject"] == "Hi O'Neil"
    assert "Hello O&#x27;Neil" in call["html"]
    assert call["text"] == "Hello O'Neil\nTeam Alpha"


def test_derive_text_from_html():
    assert derive_text_from_html("<p>One<br/>Two</p><script>x()</script>") == "One\nTwo"
    assert derive_text_from_html("") == ""


def test_parse_target_group():
    assert parse_target_group(None) == TargetGroup.ALL
    assert parse_target_group("") == TargetGroup.ALL
    assert parse_target_group("verified_leader") == TargetGroup.VERIFIED_LEADER
    assert parse_target_group(" Unverified ") == TargetGroup.UNVERIFIED_ALL
    assert parse_target_group("verified") == TargetGroup.VERIFIED_ALL
    with pytest.raises(ValueError):
        parse_target_group("everyone")
