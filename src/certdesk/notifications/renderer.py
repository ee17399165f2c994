"""Jinja2 renderer for notification emails.

Templates resolve through two tiers:

1. ``smtp.templates_path`` (operator overrides), if configured
2. the templates bundled in ``certdesk/notifications/templates``

Each kind has ``<kind>_subject.txt`` and ``<kind>_body.html``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from jinja2 import (
    BaseLoader,
    ChainableUndefined,
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
)

from certdesk.notifications.events import template_context

if TYPE_CHECKING:
    from certdesk.notifications.events import NotificationEvent


class TemplateRenderer:
    """Renders ``(subject, html_body)`` for a notification event.

    Unknown variables render as empty strings, so a template that
    mentions an optional field the event did not carry still renders.
    """

    def __init__(self, templates_path: str | None = None) -> None:
        loaders: list[BaseLoader] = []
        if templates_path:
            loaders.append(FileSystemLoader(templates_path))
        loaders.append(PackageLoader("certdesk.notifications", "templates"))

        self._env = Environment(
            loader=ChoiceLoader(loaders),
            autoescape=True,
            undefined=ChainableUndefined,
            keep_trailing_newline=False,
        )

    def render(self, event: NotificationEvent) -> tuple[str, str]:
        name = event.kind.value
        context = template_context(event)
        subject = self._env.get_template(f"{name}_subject.txt").render(**context)
        body = self._env.get_template(f"{name}_body.html").render(**context)
        return " ".join(subject.split()), body
