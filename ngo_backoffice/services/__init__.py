"""Services — Authentication flows and outbound mail."""

from ngo_backoffice.services.auth import AuthService, LoginResult
from ngo_backoffice.services.mail import LogMailer, Mailer

__all__ = ["AuthService", "LoginResult", "LogMailer", "Mailer"]
