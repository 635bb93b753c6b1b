"""Markdown rendering of a ReleaseNote.

The document layout is fixed: title, preamble, then the five required
sections in order, each exactly once, then contributors and a postamble.
What varies per project lives in a YAML template:

    title: "{{ project }} {{ version }} Release Notes"
    sections:
      installation:
        body: "Requires Kubernetes {{ min_kubernetes_version }} or newer."
      deprecation:
        not_applicable: true

Template strings are jinja2 with StrictUndefined, so a placeholder without
a value fails the render with TemplateError instead of leaking into the
note. A required section with no items, no boilerplate and no N/A marker
fails with MissingSectionError unless the template allows it to be empty.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import jinja2
import yaml
from pydantic import BaseModel, Field, ValidationError

from renote.config import default_resource, read_yaml
from renote.errors import ConfigError, MissingSectionError, TemplateError
from renote.schemas import REQUIRED_SECTIONS, ReleaseItem, ReleaseNote, Section

DEFAULT_TEMPLATE_NAME = "template.yaml"
NOT_APPLICABLE = "N/A"

# Item-driven sections may legitimately have nothing in them.
EMPTY_BY_DEFAULT = frozenset({Section.KNOWN_ISSUES, Section.RESOLVED_ISSUES})

DEFAULT_ITEM_FORMAT = (
    "- {{ item.title }} [#{{ item.id }}]({{ item.url }})"
    "{% if item.assignees %} - "
    "{% for login in item.assignees %}@{{ login }}{% if not loop.last %} {% endif %}"
    "{% endfor %}{% endif %}"
)


# ---------------------------------------------------------------------------
# Template model
# ---------------------------------------------------------------------------


class SectionTemplate(BaseModel):
    """Per-section boilerplate.

    Attributes:
        body: Text rendered under the heading, before any items
        allow_empty: Render a bare heading when there is nothing to show.
                     Defaults to true for Known Issues and Resolved Issues.
        not_applicable: Render "N/A" when the section has no items
    """

    body: str = ""
    allow_empty: bool | None = None
    not_applicable: bool = False


class Template(BaseModel):
    """A release-note template loaded from YAML."""

    title: str = "{{ project }} {{ version }} Release Notes"
    preamble: str = ""
    sections: dict[Section, SectionTemplate] = Field(default_factory=dict)
    postamble: str = ""
    item_format: str = DEFAULT_ITEM_FORMAT
    include_contributors: bool = True

    def section(self, section: Section) -> SectionTemplate:
        return self.sections.get(section) or SectionTemplate()

    def allows_empty(self, section: Section) -> bool:
        allow = self.section(section).allow_empty
        return section in EMPTY_BY_DEFAULT if allow is None else allow


def load_template(path: str | Path | None = None) -> Template:
    """Load a template file, or the packaged default when path is None.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid.
    """
    if path:
        raw, source = read_yaml(path), str(path)
    else:
        raw, source = yaml.safe_load(default_resource(DEFAULT_TEMPLATE_NAME)), DEFAULT_TEMPLATE_NAME

    try:
        return Template.model_validate(raw or {})
    except ValidationError as exc:
        raise ConfigError(f"Invalid template in {source}: {exc}") from exc


# ---------------------------------------------------------------------------
# Renderer
# ---------------------------------------------------------------------------


class Renderer:
    """Renders ReleaseNotes with one template.

    Usage:
        renderer = Renderer(load_template(), variables={"doc_url": "..."})
        markdown = renderer.render(note)

    Rendering is pure: the same note and template always give the same text.
    """

    def __init__(
        self, template: Template, variables: dict[str, Any] | None = None
    ) -> None:
        self.template = template
        self.variables = dict(variables or {})
        self._env = jinja2.Environment(
            undefined=jinja2.StrictUndefined,
            autoescape=False,
            keep_trailing_newline=False,
        )

    def render(self, note: ReleaseNote, pre_note: str = "", post_note: str = "") -> str:
        """Render the full markdown document.

        Args:
            note: The aggregated release note
            pre_note: Text placed verbatim before the generated note
            post_note: Text placed verbatim after the generated note

        Raises:
            TemplateError: Unresolved placeholder or bad template syntax
            MissingSectionError: Required section with nothing to show
        """
        context = self.context_for(note)
        parts: list[str] = []

        if pre_note.strip():
            parts.append(pre_note.strip("\n"))

        parts.append("# " + self._render_string(self.template.title, context, "title").strip())
        preamble = self._render_string(self.template.preamble, context, "preamble").strip()
        if preamble:
            parts.append(preamble)

        for section in REQUIRED_SECTIONS:
            parts.append(self._render_section(note, section, context))

        if self.template.include_contributors and note.contributors:
            lines = [f"- @{login}" for login in note.contributors]
            parts.append("## Contributors\n\n" + "\n".join(lines))

        postamble = self._render_string(self.template.postamble, context, "postamble").strip()
        if postamble:
            parts.append(postamble)
        if post_note.strip():
            parts.append(post_note.strip("\n"))

        document = "\n\n".join(parts) + "\n"
        self._check_structure(document)
        return document

    def context_for(self, note: ReleaseNote) -> dict[str, Any]:
        """Placeholder values. Unset optional fields stay undefined on purpose."""
        repo_name = note.repo.split("/")[-1] if note.repo else ""
        context: dict[str, Any] = {
            "project": repo_name.replace("-", " ").title() if repo_name else "",
            **self.variables,
            "version": note.version,
            "doc_version": note.version.lstrip("v"),
            "repo": note.repo,
            "repo_name": repo_name,
            "milestone": note.milestone,
            "upgrade_from": note.upgrade_from,
            "contributors": note.contributors,
        }
        if note.min_kubernetes_version:
            context["min_kubernetes_version"] = note.min_kubernetes_version
        return context

    def _render_section(
        self, note: ReleaseNote, section: Section, context: dict[str, Any]
    ) -> str:
        section_template = self.template.section(section)
        items = note.items_in(section)
        body = self._render_string(
            section_template.body, context, f"sections.{section.value}.body"
        ).strip()

        block = [f"## {section.heading}"]
        if items:
            if body:
                block.append(body)
            block.append("\n".join(self._render_item(item, context) for item in items))
        elif section_template.not_applicable or section in note.not_applicable:
            block.append(NOT_APPLICABLE)
        elif body:
            block.append(body)
        elif not self.template.allows_empty(section):
            raise MissingSectionError(section)

        return "\n\n".join(block)

    def _render_item(self, item: ReleaseItem, context: dict[str, Any]) -> str:
        return self._render_string(
            self.template.item_format, {**context, "item": item}, "item_format"
        ).strip()

    def _render_string(self, source: str, context: dict[str, Any], where: str) -> str:
        if not source:
            return ""
        try:
            return self._env.from_string(source).render(context)
        except jinja2.UndefinedError as exc:
            raise TemplateError(f"Unresolved placeholder in {where}: {exc.message}") from exc
        except jinja2.TemplateSyntaxError as exc:
            raise TemplateError(f"Template syntax error in {where}: {exc.message}") from exc

    @staticmethod
    def _check_structure(document: str) -> None:
        lines = document.splitlines()
        for section in REQUIRED_SECTIONS:
            count = lines.count(f"## {section.heading}")
            if count != 1:
                raise TemplateError(
                    f"Heading '## {section.heading}' appears {count} times; "
                    "templates must not repeat section headings"
                )


def render(
    note: ReleaseNote,
    template: Template,
    variables: dict[str, Any] | None = None,
) -> str:
    """Render a note with a template. See Renderer.render."""
    return Renderer(template, variables).render(note)
