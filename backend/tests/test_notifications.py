import requests
from unittest.mock import patch, MagicMock

import models
from utils import notifications
from utils.notifications import ActivityNotifier, build_message, display_name
from utils.proposals import approve_share, create_proposal


def activity_for(db_session, user_id):
    return db_session.query(models.Activity).filter(models.Activity.user_id == user_id).all()


def test_emit_records_one_row_per_recipient(db_session, trio):
    _, alice, bob, carol = trio
    notifier = ActivityNotifier(webhook_url=None)

    notifier.emit(db_session, notifications.EXPENSE_PROPOSED, [bob.id, carol.id, bob.id],
                  expense_id=7, expense_title="Dinner", actor_id=alice.id)

    rows = activity_for(db_session, bob.id)
    assert len(rows) == 1
    assert rows[0].title == "New Expense"
    assert rows[0].message == "Alice added 'Dinner'. Please review your share."
    assert rows[0].expense_id == 7
    assert len(activity_for(db_session, carol.id)) == 1
    assert activity_for(db_session, alice.id) == []


def test_emit_without_recipients_does_nothing(db_session):
    notifier = ActivityNotifier(webhook_url="https://push.example.com")
    with patch("utils.notifications.requests.post") as mock_post:
        notifier.emit(db_session, notifications.EXPENSE_APPROVED, [])
    mock_post.assert_not_called()
    assert db_session.query(models.Activity).count() == 0


def test_emit_pushes_when_configured(db_session, trio):
    _, alice, bob, _ = trio
    notifier = ActivityNotifier(webhook_url="https://push.example.com", webhook_token="secret")

    with patch("utils.notifications.requests.post") as mock_post:
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_post.return_value = mock_response

        notifier.emit(db_session, notifications.EXPENSE_FINALIZED, [alice.id, bob.id],
                      expense_id=3, expense_title="Cabin")

    mock_post.assert_called_once()
    call_args = mock_post.call_args
    assert call_args.args[0] == "https://push.example.com"
    payload = call_args.kwargs["json"]
    assert payload["user_ids"] == [alice.id, bob.id]
    assert payload["type"] == "expense_finalized"
    assert payload["related_id"] == 3
    assert call_args.kwargs["headers"]["authorization"] == "Bearer secret"


def test_push_failures_are_swallowed(db_session, trio):
    _, alice, bob, _ = trio
    notifier = ActivityNotifier(webhook_url="https://push.example.com")

    with patch("utils.notifications.requests.post", side_effect=requests.exceptions.ConnectionError("down")):
        notifier.emit(db_session, notifications.EXPENSE_APPROVED, [bob.id],
                      expense_id=1, expense_title="Cab", actor_id=alice.id)

    # The activity row is kept even though delivery failed
    assert len(activity_for(db_session, bob.id)) == 1


def test_push_reports_webhook_errors():
    notifier = ActivityNotifier(webhook_url="https://push.example.com")

    with patch("utils.notifications.requests.post") as mock_post:
        mock_response = MagicMock()
        mock_response.status_code = 500
        mock_response.text = "boom"
        mock_post.return_value = mock_response
        assert notifier.push([1], "Title", "Body", notifications.EXPENSE_DELETED) is False

    with patch("utils.notifications.requests.post", side_effect=requests.exceptions.Timeout()):
        assert notifier.push([1], "Title", "Body", notifications.EXPENSE_DELETED) is False


def test_is_push_configured():
    assert ActivityNotifier(webhook_url="https://push.example.com").is_push_configured()
    assert not ActivityNotifier(webhook_url=None).is_push_configured()


def test_display_name_falls_back(db_session, trio):
    _, alice, _, _ = trio
    assert display_name(db_session, alice.id) == "Alice"
    assert display_name(db_session, 9999) == "Someone"
    assert display_name(db_session, None) == "Someone"


def test_build_message():
    assert build_message(notifications.EXPENSE_DECLINED, "Bob", "Rent") == "Bob declined 'Rent'"
    assert build_message(notifications.EXPENSE_DELETED, "Bob", "Rent") == "Bob deleted 'Rent'"
    assert build_message("unknown", "Bob", "Rent") == "Rent"


def test_notification_failure_does_not_undo_state_change(db_session, trio):
    group, alice, bob, _ = trio

    # Push endpoint down for the whole flow
    with patch("utils.notifications.requests.post", side_effect=requests.exceptions.ConnectionError("down")):
        notifier = ActivityNotifier(webhook_url="https://push.example.com")
        expense = create_proposal(
            db_session, group_id=group.id, title="Rent", total_cents=1000,
            weights=[(alice.id, 50), (bob.id, 50)], creator_id=alice.id, payer_id=alice.id,
            notifier=notifier
        )
        approve_share(db_session, expense.id, bob.id, notifier=notifier)

    db_session.refresh(expense)
    assert expense.state == models.ExpenseState.FINALIZED
    assert db_session.query(models.LedgerEntry).filter(models.LedgerEntry.expense_id == expense.id).count() == 1
