import logging
import os
from typing import Annotated, Optional

import sendgrid
from fastapi import Depends
from jinja2 import Environment, FileSystemLoader, select_autoescape

import config

logger = logging.getLogger(__name__)

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")
SENDER_NAME = "Wall of Humanity"


def build_message(
    to: str,
    sender: str,
    subject: str,
    html: str,
    reply_to: Optional[str] = None,
) -> dict:
    """
    SendGrid v3 mail/send request body. Example data:
        {"personalizations": [{"to": [{"email": "a@x.com"}], "subject": "..."}],
         "from": {"email": "noreply@...", "name": "Wall of Humanity"},
         "content": [{"type": "text/plain", ...}, {"type": "text/html", ...}]}
    """
    data = {
        "personalizations": [
            {
                "to": [{"email": to}],
                "subject": subject,
            }
        ],
        "from": {"email": sender, "name": SENDER_NAME},
        # text/plain has to precede text/html
        "content": [
            {"type": "text/plain", "value": f"{subject}\n\nThis message is best viewed as HTML."},
            {"type": "text/html", "value": html},
        ],
    }
    if reply_to:
        data["reply_to"] = {"email": reply_to}
    return data


class EmailNotifier:
    """
    Transactional email through the SendGrid API.

    Every public ``send_*`` call is best-effort: failures are logged and
    reported as False, never raised, so callers can fire them from
    background tasks without guarding.
    """

    def __init__(
        self,
        api_key: Optional[str],
        sender: Optional[str] = None,
        operator_email: Optional[str] = None,
    ):
        self.sender = sender
        self.operator_email = operator_email
        self.client = sendgrid.SendGridAPIClient(api_key=api_key) if api_key else None
        self.templates = Environment(
            loader=FileSystemLoader(TEMPLATE_DIR),
            autoescape=select_autoescape(["html"]),
        )

    @classmethod
    def from_config(cls) -> "EmailNotifier":
        return cls(
            api_key=config.SENDGRID_API_KEY,
            sender=config.SENDGRID_DEFAULT_FROM,
            operator_email=config.OPERATOR_EMAIL,
        )

    @property
    def enabled(self) -> bool:
        return self.client is not None and bool(self.sender)

    def render(self, template: str, **context) -> str:
        return self.templates.get_template(f"emails/{template}").render(**context)

    def _deliver(self, message: dict) -> None:
        # python-http-client raises HTTPError for 4xx/5xx answers
        response = self.client.client.mail.send.post(request_body=message)
        logger.debug("SendGrid answered %s", response.status_code)

    def send(
        self,
        to: Optional[str],
        subject: str,
        template: str,
        reply_to: Optional[str] = None,
        **context,
    ) -> bool:
        if not to:
            logger.warning("No recipient for %r; skipping", subject)
            return False
        if not self.enabled:
            logger.info("Email disabled; not sending %r to %s", subject, to)
            return False
        try:
            html = self.render(template, **context)
            self._deliver(build_message(to, self.sender, subject, html, reply_to))
        except Exception:
            logger.exception("Failed to send %r to %s", subject, to)
            return False
        logger.info("Sent %r to %s", subject, to)
        return True

    def send_welcome(self, email: str, name: str) -> bool:
        return self.send(email, "Welcome to Wall of Humanity", "welcome.html", name=name)

    def send_request_created(self, details: dict) -> bool:
        """Donor, operator and requester each get their own copy."""
        title = details.get("donation_title")
        results = [
            self.send(
                details.get("donor_email"),
                f"New request for your donation: {title}",
                "request_owner.html",
                **details,
            ),
            self.send(
                self.operator_email,
                f"Donation request: {title}",
                "request_operator.html",
                **details,
            ),
            self.send(
                details.get("requester_email"),
                f"Your request for {title} was received",
                "request_confirmation.html",
                **details,
            ),
        ]
        return all(results)

    def send_request_status(self, details: dict) -> bool:
        status = details.get("status")
        if status == "approved":
            subject = "Your donation request was approved"
        elif status == "rejected":
            subject = "Your donation request was not approved"
        else:
            subject = f"Your donation request is now {status}"
        return self.send(
            details.get("requester_email"),
            subject,
            "request_status.html",
            **details,
        )

    def send_contact(self, name: str, email: str, message: str) -> bool:
        return self.send(
            self.operator_email,
            f"New contact form message from {name}",
            "contact.html",
            reply_to=email,
            name=name,
            email=email,
            message=message,
        )


notifier = EmailNotifier.from_config()


def get_notifier() -> EmailNotifier:
    return notifier


NotifierDep = Annotated[EmailNotifier, Depends(get_notifier)]
