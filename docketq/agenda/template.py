"""
Agenda email templates.

Renders the daily agenda as a single-column HTML card plus a plain-text
alternative. Dates are shown in the recipient's timezone. Every value that
comes from user data is HTML-escaped.
"""

from __future__ import annotations

import html
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from docketq.agenda.models import Commitment
from docketq.errors import TemplateError

DEFAULT_TEMPLATE = "agenda_summary"

AGENDA_SUBJECT = "📅 Legal Agenda Summary - Next 24h"
TEST_SUBJECT = "📅 [TEST] Legal Agenda Summary"

DATE_FORMAT = "%a %d/%m/%Y, %H:%M"

HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Legal Agenda Summary</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            max-width: 600px;
            margin: 20px auto;
            padding: 20px;
            background-color: #f5f5f5;
        }}

        .agenda-card {{
            background: white;
            border-radius: 12px;
            padding: 24px;
            box-shadow: 0 2px 8px rgba(0,0,0,0.1);
        }}

        .header {{
            font-size: 18px;
            font-weight: 600;
            color: #1a1a1a;
            margin-bottom: 8px;
        }}

        .intro {{
            font-size: 15px;
            line-height: 1.6;
            color: #444;
            border-bottom: 2px solid #f0f0f0;
            padding-bottom: 12px;
            margin-bottom: 16px;
        }}

        .commitment-list {{
            list-style: none;
            padding: 0;
            margin: 0;
        }}

        .commitment {{
            margin-bottom: 12px;
            background: #f9f9f9;
            border-radius: 8px;
            padding: 12px 16px;
            border-left: 3px solid #0b57d0;
        }}

        .commitment-title {{
            font-weight: 600;
            color: #1a1a1a;
        }}

        .commitment-when {{
            margin-top: 4px;
            font-size: 14px;
            color: #0b57d0;
        }}

        .commitment-meta {{
            margin-top: 4px;
            font-size: 13px;
            color: #555;
        }}

        .footer {{
            margin-top: 24px;
            padding-top: 16px;
            border-top: 1px solid #e0e0e0;
            font-size: 12px;
            color: #999;
            text-align: center;
        }}

        @media (max-width: 600px) {{
            body {{
                margin: 0;
                padding: 12px;
            }}

            .agenda-card {{
                padding: 16px;
            }}
        }}
    </style>
</head>
<body>
    <div class="agenda-card">
        <div class="header">{greeting}</div>
        <div class="intro">{intro}</div>
        <ul class="commitment-list">
{items}
        </ul>
        <div class="footer">
            Times shown in {timezone}. You receive this summary because agenda
            notifications are enabled in your profile.
        </div>
    </div>
</body>
</html>
"""

ITEM_TEMPLATE = """            <li class="commitment">
                <div class="commitment-title">{title}</div>
                <div class="commitment-when">{when}</div>
{meta}            </li>"""

META_TEMPLATE = """                <div class="commitment-meta">{label}: {value}</div>
"""


@dataclass(frozen=True)
class RenderedEmail:
    html: str
    text: str


def format_local(instant: datetime, timezone: str) -> str:
    return instant.astimezone(ZoneInfo(timezone)).strftime(DATE_FORMAT)


def _greeting(full_name: str) -> str:
    first = full_name.strip()
    return f"Hello, {first}!" if first else "Hello!"


def _intro(count: int) -> str:
    if count == 1:
        return "You have 1 commitment in the next 24 hours."
    return f"You have {count} commitments in the next 24 hours."


def _meta_fields(item: Commitment) -> list[tuple[str, str]]:
    fields = []
    if item.location:
        fields.append(("Location", item.location))
    if item.process_number:
        fields.append(("Case no.", item.process_number))
    if item.client_name:
        fields.append(("Client", item.client_name))
    return fields


def render_agenda_html(full_name: str, items: Sequence[Commitment], timezone: str) -> str:
    rendered_items = []
    for item in items:
        meta = "".join(
            META_TEMPLATE.format(label=label, value=html.escape(value))
            for label, value in _meta_fields(item)
        )
        rendered_items.append(
            ITEM_TEMPLATE.format(
                title=html.escape(item.title),
                when=html.escape(format_local(item.commitment_date, timezone)),
                meta=meta,
            )
        )

    return HTML_TEMPLATE.format(
        greeting=html.escape(_greeting(full_name)),
        intro=_intro(len(items)),
        items="\n".join(rendered_items),
        timezone=html.escape(timezone),
    )


def render_agenda_text(full_name: str, items: Sequence[Commitment], timezone: str) -> str:
    lines = [_greeting(full_name), "", _intro(len(items)), ""]
    for item in items:
        lines.append(f"- {item.title}")
        lines.append(f"  {format_local(item.commitment_date, timezone)}")
        lines.extend(f"  {label}: {value}" for label, value in _meta_fields(item))
        lines.append("")
    lines.append(f"Times shown in {timezone}.")
    return "\n".join(lines)


def render_agenda_summary(full_name: str, items: Sequence[Commitment], timezone: str) -> RenderedEmail:
    return RenderedEmail(
        html=render_agenda_html(full_name, items, timezone),
        text=render_agenda_text(full_name, items, timezone),
    )


Renderer = Callable[[str, Sequence[Commitment], str], RenderedEmail]

TEMPLATES: dict[str, Renderer] = {
    DEFAULT_TEMPLATE: render_agenda_summary,
}


def get_renderer(name: str | None) -> Renderer:
    """
    Look up a template by name (None selects the default).

    Raises:
        TemplateError: if the name is not registered
    """
    key = name or DEFAULT_TEMPLATE
    try:
        return TEMPLATES[key]
    except KeyError:
        raise TemplateError(
            f"Unknown template {key!r} (available: {', '.join(sorted(TEMPLATES))})"
        ) from None


def sample_commitments(now: datetime, user_id: str = "sample", test: bool = False) -> list[Commitment]:
    """
    Fabricated commitments for preview and test dispatch.

    Preview shows two items; a test dispatch sends a single clearly-marked one.
    """
    if test:
        return [
            Commitment(
                user_id=user_id,
                title="Test: Conciliation hearing",
                commitment_date=now + timedelta(hours=2),
                location="Central Courthouse (TEST)",
                process_number="0001234-56.2025.8.26.0000",
                client_name="Test Client",
            )
        ]
    return [
        Commitment(
            user_id=user_id,
            title="Conciliation hearing",
            commitment_date=now + timedelta(hours=2),
            location="Central Courthouse",
            process_number="0001234-56.2025.8.26.0000",
            client_name="Maria Silva",
        ),
        Commitment(
            user_id=user_id,
            title="Deadline: statement of defense",
            commitment_date=now + timedelta(hours=6),
            process_number="0009876-54.2025.8.26.0000",
            client_name="João Souza",
        ),
    ]
