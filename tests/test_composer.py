"""Summary: Tests for content composition and personalization tokens.

Importance: Ensures stored snapshots and sent templates render tokens correctly.
Alternatives: Compare rendered emails by eye.
"""

from __future__ import annotations

from mailcast.composer import (
    ContentComposer,
    apply_replacements,
    find_replacements,
    html_to_text,
    recipient_value,
)
from mailcast.models import EmailTemplate
from mailcast.storage.sqlite_store import StoredContent, StoredRecipient


def _composer() -> ContentComposer:
    return ContentComposer(
        site_url="https://news.example.com",
        from_address="newsletter@example.com",
        support_address="support@example.com",
    )


def _content(html: str, plaintext: str = "") -> StoredContent:
    return StoredContent(
        id=1,
        title="Fish & Chips",
        html=html,
        plaintext=plaintext,
        visibility="public",
        status="published",
        published_at=None,
    )


def test_find_replacements_reads_fallbacks() -> None:
    """Summary: Verify tokens with plain and HTML-escaped quotes are parsed.

    Importance: Editors produce escaped quotes in rich text.
    Alternatives: Support only one quoting style.
    """

    template = EmailTemplate(
        subject="Hi",
        html='<p>%%{first_name, "there"}%% and %%{name,&quot;friend&quot;}%%</p>',
        plaintext="Hello %%{email}%%",
    )
    replacements = find_replacements(template)
    assert [(item.id, item.format, item.source_field, item.fallback) for item in replacements] == [
        ("replacement_1", "html", "first_name", "there"),
        ("replacement_2", "html", "name", "friend"),
        ("replacement_3", "plaintext", "email", ""),
    ]


def test_serialize_preview_has_no_unsubscribe_token() -> None:
    template, replacements = _composer().serialize(_content("<p>Body</p>"), is_preview=True)
    assert template.subject == "Fish & Chips"
    assert "<h1>Fish &amp; Chips</h1>" in template.html
    assert 'href="#"' in template.html
    assert replacements == []
    assert template.plaintext.endswith("Unsubscribe:\n")


def test_serialize_marks_unsubscribe_link_for_sends() -> None:
    """Summary: Verify sent templates carry an unsubscribe token in both bodies.

    Importance: Every delivered email must let the recipient opt out.
    Alternatives: Append the link inside the delivery channel.
    """

    template, replacements = _composer().serialize(_content("<p>Body</p>", plaintext="Body"))
    fields = [(item.format, item.source_field) for item in replacements]
    assert fields == [("html", "unsubscribe_url"), ("plaintext", "unsubscribe_url")]
    assert template.from_address == "newsletter@example.com"
    assert template.support_address == "support@example.com"
    assert "mailto:support@example.com" in template.html


def test_apply_replacements_uses_render_callback() -> None:
    template = EmailTemplate(
        subject="Hi",
        html="<p>%%{first_name}%% / %%{first_name}%%</p>",
        plaintext="",
    )
    replacements = find_replacements(template)
    apply_replacements(template, replacements, lambda item: f"[{item.id}]")
    assert template.html == "<p>[replacement_1] / [replacement_2]</p>"


def test_unsubscribe_url_encodes_uuid() -> None:
    url = _composer().unsubscribe_url("abc 123")
    assert url == "https://news.example.com/unsubscribe/?uuid=abc+123"


def test_recipient_value_and_html_to_text() -> None:
    recipient = StoredRecipient(
        id=1,
        uuid="u-1",
        email="ann@example.com",
        name="Ann Lee",
        subscribed=True,
        paid=False,
        created_at="now",
    )
    assert recipient_value(recipient, "first_name") == "Ann"
    assert recipient_value(recipient, "uuid") == "u-1"
    assert recipient_value(recipient, "unknown") == ""
    assert html_to_text("<p>One &amp; two</p><p>Three<br>four</p>") == "One & two\n\nThree\nfour"
