"""Markdown rendering for outbound replies."""

from dataclasses import dataclass

import markdown

MATRIX_HTML_FORMAT = "org.matrix.custom.html"
MARKDOWN_EXTENSIONS = ["fenced_code", "tables", "nl2br", "sane_lists"]


@dataclass(frozen=True)
class RenderedMessage:
    """A reply ready to send: plain body plus HTML formatted body."""

    body: str
    formatted_body: str

    def to_content(self, in_reply_to: str | None = None) -> dict:
        """Build an m.room.message content dict, optionally threaded as a reply."""
        content: dict = {
            "msgtype": "m.text",
            "body": self.body,
            "format": MATRIX_HTML_FORMAT,
            "formatted_body": self.formatted_body,
        }
        if in_reply_to:
            content["m.relates_to"] = {"m.in_reply_to": {"event_id": in_reply_to}}
        return content


def render(markdown_text: str) -> RenderedMessage:
    """Render markdown to Matrix HTML; the raw markdown stays as the plain body."""
    # A fresh Markdown instance per call; converters keep state between calls
    md = markdown.Markdown(extensions=MARKDOWN_EXTENSIONS)
    return RenderedMessage(body=markdown_text, formatted_body=md.convert(markdown_text))
