"""Summary: Delivery channel interfaces and implementations.

Importance: Hands rendered templates and recipient variables to an email transport.
Alternatives: Call a single vendor SDK directly from the dispatcher.
"""

from __future__ import annotations

import base64
import json
import logging
import smtplib
import threading
import urllib.error
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Any, Iterator, Sequence, TypeVar

from mailcast.config import AppConfig
from mailcast.errors import TransportError
from mailcast.models import BatchError, BatchOutcome, EmailTemplate


logger = logging.getLogger(__name__)

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of at most `size` items."""

    if size < 1:
        raise ValueError("Chunk size must be at least 1")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


class DeliveryChannel(ABC):
    """Summary: Abstract interface for bulk email transports.

    Importance: Lets the dispatcher stay unaware of SMTP, HTTP APIs, or test doubles.
    Alternatives: Branch on provider names inside the dispatcher.
    """

    batch_size: int = 1000

    def placeholder(self, variable_id: str) -> str:
        """Summary: Return the transport syntax for a per-recipient variable.

        Importance: Templates are rewritten with this syntax before sending.
        Alternatives: Render each recipient's body before handing it over.
        """

        return f"%recipient.{variable_id}%"

    @abstractmethod
    def send(
        self,
        template: EmailTemplate,
        emails: list[str],
        variables: dict[str, dict[str, str]],
    ) -> list[BatchOutcome]:
        """Summary: Deliver a template to recipients in transport-sized batches.

        Importance: Returns one outcome per transport batch so partial success is visible.
        Alternatives: Return a single success flag.
        """


@dataclass
class MockDeliveryChannel(DeliveryChannel):
    """Summary: In-memory delivery channel for local runs and tests.

    Importance: Exercises the full pipeline without network access.
    Alternatives: Point SMTP at a local debugging server.
    """

    batch_size: int = 1000
    fail_batches: set[int] = field(default_factory=set)
    error: Exception | None = None
    sent: list[dict[str, Any]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def send(
        self,
        template: EmailTemplate,
        emails: list[str],
        variables: dict[str, dict[str, str]],
    ) -> list[BatchOutcome]:
        if self.error is not None:
            raise self.error
        outcomes: list[BatchOutcome] = []
        for index, batch in enumerate(chunked(emails, self.batch_size)):
            if index in self.fail_batches:
                outcomes.append(
                    BatchOutcome.failure(
                        index,
                        len(batch),
                        BatchError(message=f"Mock failure for batch {index}", code="mock"),
                    )
                )
                continue
            with self._lock:
                self.sent.append(
                    {
                        "subject": template.subject,
                        "html": template.html,
                        "plaintext": template.plaintext,
                        "emails": batch,
                        "variables": {email: variables.get(email, {}) for email in batch},
                    }
                )
            outcomes.append(BatchOutcome.success(index, len(batch), {"id": f"mock-{index}"}))
        logger.info("Mock channel accepted %s recipients.", len(emails))
        return outcomes


class SmtpDeliveryChannel(DeliveryChannel):
    """Summary: Sends personalized messages over SMTP.

    Importance: Works with any relay without a vendor account.
    Alternatives: Use a hosted bulk API with server-side personalization.
    """

    def __init__(
        self,
        host: str,
        port: int,
        user: str | None = None,
        password: str | None = None,
        use_tls: bool = False,
        timeout: float = 15.0,
        batch_size: int = 1000,
    ) -> None:
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._use_tls = use_tls
        self._timeout = timeout
        self.batch_size = batch_size

    def send(
        self,
        template: EmailTemplate,
        emails: list[str],
        variables: dict[str, dict[str, str]],
    ) -> list[BatchOutcome]:
        outcomes: list[BatchOutcome] = []
        for index, batch in enumerate(chunked(emails, self.batch_size)):
            sent = 0
            try:
                with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
                    if self._use_tls:
                        server.starttls()
                    if self._user and self._password:
                        server.login(self._user, self._password)
                    for email in batch:
                        server.send_message(
                            self._build_message(template, email, variables.get(email, {}))
                        )
                        sent += 1
            except (smtplib.SMTPException, OSError) as exc:
                logger.warning("SMTP batch %s failed after %s messages: %s", index, sent, exc)
                outcomes.append(
                    BatchOutcome.failure(
                        index,
                        len(batch),
                        BatchError(message=str(exc) or exc.__class__.__name__, code=exc.__class__.__name__),
                        {"sent": sent},
                    )
                )
                continue
            outcomes.append(BatchOutcome.success(index, len(batch), {"sent": sent}))
        return outcomes

    def _build_message(
        self, template: EmailTemplate, email: str, data: dict[str, str]
    ) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = template.subject
        message["From"] = template.from_address
        message["To"] = email
        if template.support_address:
            message["Reply-To"] = template.support_address
        if data.get("unsubscribe_url"):
            message["List-Unsubscribe"] = f"<{data['unsubscribe_url']}>"
        message.set_content(self._render(template.plaintext, data))
        message.add_alternative(self._render(template.html, data), subtype="html")
        return message

    def _render(self, body: str, data: dict[str, str]) -> str:
        for key, value in data.items():
            body = body.replace(self.placeholder(key), value)
        return body


class MailgunDeliveryChannel(DeliveryChannel):
    """Summary: Sends batches through the Mailgun messages API.

    Importance: Personalization happens server-side via recipient variables, so one
    request covers a whole batch.
    Alternatives: Use the SMTP channel against Mailgun's relay.
    """

    def __init__(
        self,
        domain: str,
        api_key: str,
        base_url: str,
        timeout: float = 10.0,
        batch_size: int = 1000,
    ) -> None:
        self._domain = domain
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self.batch_size = batch_size

    def send(
        self,
        template: EmailTemplate,
        emails: list[str],
        variables: dict[str, dict[str, str]],
    ) -> list[BatchOutcome]:
        outcomes: list[BatchOutcome] = []
        for index, batch in enumerate(chunked(emails, self.batch_size)):
            try:
                response = self._post_batch(template, batch, variables)
            except TransportError as exc:
                logger.warning("Mailgun batch %s failed: %s", index, exc.message)
                outcomes.append(
                    BatchOutcome.failure(index, len(batch), BatchError(message=exc.message, code="mailgun"))
                )
                continue
            outcomes.append(
                BatchOutcome.success(
                    index,
                    len(batch),
                    {"id": response.get("id"), "message": response.get("message")},
                )
            )
        return outcomes

    def _post_batch(
        self,
        template: EmailTemplate,
        batch: list[str],
        variables: dict[str, dict[str, str]],
    ) -> dict[str, Any]:
        """Summary: Send one form-encoded batch request and parse JSON.

        Importance: Avoids new dependencies while supporting the Mailgun API.
        Alternatives: Use requests or the Mailgun SDK.
        """

        fields: list[tuple[str, str]] = [
            ("from", template.from_address),
            ("subject", template.subject),
            ("html", template.html),
            ("text", template.plaintext),
            ("recipient-variables", json.dumps({email: variables.get(email, {}) for email in batch})),
        ]
        if template.support_address:
            fields.append(("h:Reply-To", template.support_address))
        fields.extend(("to", email) for email in batch)
        credentials = base64.b64encode(f"api:{self._api_key}".encode("utf-8")).decode("ascii")
        request = urllib.request.Request(
            f"{self._base_url}/{self._domain}/messages",
            data=urllib.parse.urlencode(fields).encode("utf-8"),
            headers={
                "Authorization": f"Basic {credentials}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            error_body = exc.read().decode("utf-8")
            raise TransportError(f"Mailgun request failed: {error_body or exc.reason}") from exc
        except urllib.error.URLError as exc:
            raise TransportError(f"Mailgun unreachable: {exc.reason}") from exc
        return json.loads(raw)


@dataclass(frozen=True)
class DeliveryChannelFactory:
    """Summary: Factory for selecting delivery channels from configuration.

    Importance: Keeps provider selection logic centralized.
    Alternatives: Wire channels manually at the application entrypoint.
    """

    config: AppConfig

    def build(self) -> DeliveryChannel:
        provider = self.config.delivery_provider
        if provider == "smtp":
            return SmtpDeliveryChannel(
                host=self.config.smtp_host,
                port=self.config.smtp_port,
                user=self.config.smtp_user,
                password=self.config.smtp_password,
                use_tls=self.config.smtp_use_tls,
                timeout=self.config.smtp_timeout,
                batch_size=self.config.delivery_batch_size,
            )
        if provider == "mailgun":
            if not (self.config.mailgun_domain and self.config.mailgun_api_key):
                raise ValueError("MAILGUN_DOMAIN and MAILGUN_API_KEY are required for mailgun provider")
            return MailgunDeliveryChannel(
                domain=self.config.mailgun_domain,
                api_key=self.config.mailgun_api_key,
                base_url=self.config.mailgun_base_url,
                timeout=self.config.http_timeout,
                batch_size=self.config.delivery_batch_size,
            )
        return MockDeliveryChannel(batch_size=self.config.delivery_batch_size)
