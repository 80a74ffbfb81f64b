"""Summary: Renders content items into email templates with personalization tokens.

Importance: Produces both the stored snapshot of a dispatch and the template sent to recipients.
Alternatives: Use a full templating engine such as Jinja2 or MJML.
"""

from __future__ import annotations

import html as html_lib
import re
import urllib.parse
from dataclasses import dataclass
from typing import Callable

from mailcast.models import EmailTemplate, Replacement
from mailcast.storage.sqlite_store import StoredContent, StoredRecipient


REPLACEMENT_PATTERN = re.compile(
    r'%%\{(\w*?)(?:,? *(?:"|&quot;)(.*?)(?:"|&quot;))?\}%%'
)
TAG_PATTERN = re.compile(r"<[^>]+>")
FORMATS = ("html", "plaintext")
RECIPIENT_FIELDS = {
    "first_name": lambda recipient: recipient.first_name,
    "name": lambda recipient: recipient.name,
    "email": lambda recipient: recipient.email,
    "uuid": lambda recipient: recipient.uuid,
}


@dataclass(frozen=True)
class ContentComposer:
    """Summary: Serializes content items into personalized email templates.

    Importance: Keeps rendering decisions out of the dispatch state machine.
    Alternatives: Render inside the delivery channel.
    """

    site_url: str
    from_address: str
    support_address: str

    def serialize(
        self, content: StoredContent, is_preview: bool = False
    ) -> tuple[EmailTemplate, list[Replacement]]:
        """Summary: Render a content item and collect its personalization tokens.

        Importance: One render serves every recipient; tokens are swapped per recipient later.
        Alternatives: Render a separate body per recipient.
        """

        template = EmailTemplate(
            subject=content.title,
            html=self._render_html(content, is_preview),
            plaintext=self._render_plaintext(content, is_preview),
            from_address=self.from_address,
            support_address=self.support_address,
        )
        return template, find_replacements(template)

    def unsubscribe_url(self, recipient_uuid: str) -> str:
        query = urllib.parse.urlencode({"uuid": recipient_uuid})
        return f"{self.site_url}/unsubscribe/?{query}"

    def _render_html(self, content: StoredContent, is_preview: bool) -> str:
        unsubscribe = "#" if is_preview else "%%{unsubscribe_url}%%"
        return (
            "<!DOCTYPE html>\n"
            "<html>\n<body>\n"
            f"<h1>{html_lib.escape(content.title)}</h1>\n"
            f"{content.html}\n"
            "<hr>\n"
            f'<p><a href="{unsubscribe}">Unsubscribe</a> | '
            f'<a href="mailto:{self.support_address}">Contact us</a></p>\n'
            "</body>\n</html>"
        )

    def _render_plaintext(self, content: StoredContent, is_preview: bool) -> str:
        body = content.plaintext or html_to_text(content.html)
        unsubscribe = "" if is_preview else "%%{unsubscribe_url}%%"
        footer = f"Unsubscribe: {unsubscribe}".rstrip()
        return f"{content.title}\n\n{body}\n\n---\n{footer}\n"


def find_replacements(template: EmailTemplate) -> list[Replacement]:
    """Summary: Collect every personalization token in the html and plaintext bodies.

    Importance: Each occurrence gets its own id so fallbacks can differ per token.
    Alternatives: Deduplicate tokens by field name.
    """

    replacements: list[Replacement] = []
    for format in FORMATS:
        for match in REPLACEMENT_PATTERN.finditer(template.body(format)):
            replacements.append(
                Replacement(
                    id=f"replacement_{len(replacements) + 1}",
                    format=format,
                    source_field=match.group(1),
                    match=match.group(0),
                    fallback=html_lib.unescape(match.group(2) or ""),
                )
            )
    return replacements


def apply_replacements(
    template: EmailTemplate,
    replacements: list[Replacement],
    render: Callable[[Replacement], str],
) -> EmailTemplate:
    """Summary: Swap each token occurrence for the text produced by `render`.

    Importance: Used both for fallback snapshots and for delivery placeholders.
    Alternatives: Re-run the regex with a substitution callback.
    """

    for replacement in replacements:
        body = template.body(replacement.format)
        template.set_body(replacement.format, body.replace(replacement.match, render(replacement), 1))
    return template


def recipient_value(recipient: StoredRecipient, source_field: str) -> str:
    getter = RECIPIENT_FIELDS.get(source_field)
    return getter(recipient) if getter else ""


def html_to_text(markup: str) -> str:
    text = TAG_PATTERN.sub("", markup.replace("<br>", "\n").replace("</p>", "\n\n"))
    return html_lib.unescape(text).strip()
