"""Services — Outbound mail.

The back office only needs two notifications: the password reset link and
the "your password was changed" confirmation.  Delivery is pluggable via the
:class:`Mailer` interface; the default :class:`LogMailer` writes the message
to the structured log so development setups need no SMTP server.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ngo_backoffice.logging import get_logger

log = get_logger(__name__)


class Mailer(ABC):
    """Abstract outbound mail transport."""

    @abstractmethod
    async def send(self, to: str, subject: str, body: str) -> None:
        """Deliver one plain-text message.

        May raise; callers log the failure and carry on.
        """


class LogMailer(Mailer):
    """Mailer that logs instead of sending."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    async def send(self, to: str, subject: str, body: str) -> None:
        self.sent.append((to, subject, body))
        log.info("mail_logged", to=to, subject=subject)


def password_reset_message(username: str, reset_link: str, ttl_minutes: int) -> tuple[str, str]:
    subject = "Password reset request"
    body = (
        f"Hello {username},\n\n"
        "A password reset was requested for your back office account.\n"
        f"Use the link below within {ttl_minutes} minutes to choose a new password:\n\n"
        f"{reset_link}\n\n"
        "If you did not request this, you can ignore this message."
    )
    return subject, body


def password_changed_message(username: str) -> tuple[str, str]:
    subject = "Your password was changed"
    body = (
        f"Hello {username},\n\n"
        "The password for your back office account was just changed.\n"
        "If this was not you, contact a super administrator immediately."
    )
    return subject, body
