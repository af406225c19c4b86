"""Activity feed and push delivery for expense events.

Delivery is best-effort: every failure is logged and swallowed so a
notification problem can never block or undo an expense state change.
"""

import os
import logging
import requests
from typing import Iterable, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models

logger = logging.getLogger(__name__)

# Environment configuration
PUSH_WEBHOOK_URL = os.getenv("PUSH_WEBHOOK_URL")  # e.g. the send-push edge function
PUSH_WEBHOOK_TOKEN = os.getenv("PUSH_WEBHOOK_TOKEN")

EXPENSE_PROPOSED = "expense_proposed"
EXPENSE_APPROVED = "expense_approved"
EXPENSE_DECLINED = "expense_declined"
EXPENSE_FINALIZED = "expense_finalized"
EXPENSE_DELETED = "expense_deleted"

EVENT_TITLES = {
    EXPENSE_PROPOSED: "New Expense",
    EXPENSE_APPROVED: "Expense Approved",
    EXPENSE_DECLINED: "Expense Declined",
    EXPENSE_FINALIZED: "Expense Finalized",
    EXPENSE_DELETED: "Expense Deleted",
}


def display_name(db: Session, user_id: Optional[int]) -> str:
    """Full name or email of a user, with a fallback for unknown IDs."""
    if user_id is None:
        return "Someone"
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        return "Someone"
    return user.full_name or user.email


def build_message(kind: str, actor_name: str, expense_title: str) -> str:
    if kind == EXPENSE_PROPOSED:
        return f"{actor_name} added '{expense_title}'. Please review your share."
    if kind == EXPENSE_APPROVED:
        return f"{actor_name} approved '{expense_title}'"
    if kind == EXPENSE_DECLINED:
        return f"{actor_name} declined '{expense_title}'"
    if kind == EXPENSE_FINALIZED:
        return f"Everyone approved '{expense_title}'. It now counts toward balances."
    if kind == EXPENSE_DELETED:
        return f"{actor_name} deleted '{expense_title}'"
    return expense_title


class ActivityNotifier:
    """Records an activity row per recipient and optionally forwards it to a push webhook."""

    def __init__(
        self,
        webhook_url: Optional[str] = PUSH_WEBHOOK_URL,
        webhook_token: Optional[str] = PUSH_WEBHOOK_TOKEN,
        timeout: int = 5
    ):
        self.webhook_url = webhook_url
        self.webhook_token = webhook_token
        self.timeout = timeout

    def is_push_configured(self) -> bool:
        """Check if push delivery is configured"""
        return bool(self.webhook_url)

    def emit(
        self,
        db: Session,
        kind: str,
        recipient_ids: Iterable[int],
        expense_id: Optional[int] = None,
        expense_title: str = "",
        actor_id: Optional[int] = None
    ) -> None:
        """
        Record and deliver an expense event.

        Must be called after the state change has been committed; a failure
        here rolls back only the activity rows.
        """
        recipients = [uid for uid in dict.fromkeys(recipient_ids) if uid is not None]
        if not recipients:
            return

        title = EVENT_TITLES.get(kind, "Activity")
        try:
            message = build_message(kind, display_name(db, actor_id), expense_title)
            for user_id in recipients:
                db.add(models.Activity(
                    user_id=user_id,
                    kind=kind,
                    title=title,
                    message=message,
                    expense_id=expense_id,
                    actor_id=actor_id
                ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Failed to record {kind} activity for expense {expense_id}: {e}")
            return

        if self.is_push_configured():
            self.push(recipients, title, message, kind, expense_id)

    def push(
        self,
        recipient_ids: list[int],
        title: str,
        message: str,
        kind: str,
        expense_id: Optional[int] = None
    ) -> bool:
        """
        Send a push notification via the webhook

        Returns:
            bool: True if the webhook accepted the notification, False otherwise
        """
        headers = {"content-type": "application/json"}
        if self.webhook_token:
            headers["authorization"] = f"Bearer {self.webhook_token}"

        payload = {
            "user_ids": recipient_ids,
            "title": title,
            "body": message,
            "type": kind,
            "related_id": expense_id
        }

        try:
            response = requests.post(
                self.webhook_url,
                json=payload,
                headers=headers,
                timeout=self.timeout
            )

            if response.status_code in (200, 201, 202):
                logger.info(f"Push '{kind}' delivered to {len(recipient_ids)} recipient(s)")
                return True
            else:
                logger.warning(f"Push webhook error ({response.status_code}): {response.text}")
                return False

        except requests.exceptions.Timeout:
            logger.warning("Push webhook request timed out")
            return False
        except requests.exceptions.RequestException as e:
            logger.warning(f"Push webhook request failed: {e}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error sending push notification: {e}")
            return False
