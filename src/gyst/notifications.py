"""Daily reminder dispatch for gyst.

Meant to run once a day from an external scheduler (``gyst notify`` from
cron at 11:00). Delivery is delegated to a ``Sender``; a token the push
service reports as unregistered is deleted, any other failure is logged and
counted. Nothing is retried within a run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from gyst.config import DEFAULT_NOTIFICATION_BODY, DEFAULT_NOTIFICATION_TITLE
from gyst.db import Database
from gyst.errors import NotificationSendError, TokenInvalidError

logger = logging.getLogger(__name__)


@dataclass
class NotificationMessage:
    token: str
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)


class Sender(Protocol):
    def send(self, message: NotificationMessage) -> None:
        """Deliver one message.

        Raises TokenInvalidError if the token is no longer registered, or
        NotificationSendError for any other delivery failure.
        """


@dataclass
class DispatchReport:
    sent: int = 0
    invalid_removed: int = 0
    failed: int = 0
    users: int = 0

    @property
    def attempted(self) -> int:
        return self.sent + self.invalid_removed + self.failed


def build_messages(
    db: Database,
    title: str = DEFAULT_NOTIFICATION_TITLE,
    body: str = DEFAULT_NOTIFICATION_BODY,
) -> tuple[list[NotificationMessage], int]:
    """One message per registered token of every user with reminders on.

    Returns (messages, number_of_opted_in_users).
    """
    messages: list[NotificationMessage] = []
    user_ids = db.list_users_with_notifications()
    for user_id in user_ids:
        for token in db.list_tokens(user_id):
            messages.append(
                NotificationMessage(
                    token=token.token,
                    title=title,
                    body=body,
                    data={"user_id": user_id},
                )
            )
    return messages, len(user_ids)


def send_daily_notifications(
    db: Database,
    sender: Sender,
    title: str = DEFAULT_NOTIFICATION_TITLE,
    body: str = DEFAULT_NOTIFICATION_BODY,
) -> DispatchReport:
    """Send the daily reminder to every opted-in user's devices."""
    messages, user_count = build_messages(db, title=title, body=body)
    report = DispatchReport(users=user_count)
    removed_tokens: set[str] = set()

    for message in messages:
        if message.token in removed_tokens:
            continue
        try:
            sender.send(message)
        except TokenInvalidError:
            removed = db.delete_token_everywhere(message.token)
            removed_tokens.add(message.token)
            logger.info("Removed unregistered token %s (%d registrations)", message.token, removed)
            report.invalid_removed += 1
        except NotificationSendError as exc:
            logger.error(
                "Failed to send reminder to %s for user %s: %s",
                message.token, message.data.get("user_id"), exc.reason or exc,
            )
            report.failed += 1
        except Exception:
            logger.exception(
                "Unexpected error sending reminder to %s for user %s",
                message.token, message.data.get("user_id"),
            )
            report.failed += 1
        else:
            report.sent += 1

    logger.info(
        "Daily reminders: %d sent, %d invalid tokens removed, %d failed",
        report.sent, report.invalid_removed, report.failed,
    )
    return report
