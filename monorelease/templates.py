"""Placeholder substitution for messages, tag names and replacements.

Templates use ``{{name}}`` placeholders. Rendering is plain find/replace:
unknown placeholders and placeholders without a value are left as written.
"""

from __future__ import annotations

import datetime

from pydantic import BaseModel


class Template(BaseModel):
    """Values available to templates; unset fields leave their token alone."""

    prev_version: str | None = None
    prev_metadata: str | None = None
    version: str | None = None
    metadata: str | None = None
    crate_name: str | None = None
    date: str | None = None
    prefix: str | None = None
    tag_name: str | None = None
    next_version: str | None = None
    next_metadata: str | None = None

    def render(self, text: str) -> str:
        for name, value in self.model_dump().items():
            if value is not None:
                text = text.replace(f"{{{{{name}}}}}", value)
        return text


def today() -> str:
    """Current UTC date as YYYY-MM-DD.

    Called once per run; the result is passed to every phase so all packages
    released together share one date.
    """
    return datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%d")


def render_tag(
    tag_name: str,
    tag_prefix: str,
    crate_name: str,
    prev_version: str,
    prev_metadata: str,
    version: str,
    metadata: str,
) -> str:
    """Render a tag name, expanding the prefix template first.

    The prefix may itself use placeholders (the default for non-root packages
    is ``{{crate_name}}-``), so it is rendered before being substituted into
    ``{{prefix}}``.
    """
    template = Template(
        prev_version=prev_version,
        prev_metadata=prev_metadata,
        version=version,
        metadata=metadata,
        crate_name=crate_name,
    )
    prefix = template.render(tag_prefix)
    return template.model_copy(update={"prefix": prefix}).render(tag_name)


def render_tag_glob(tag_name: str, tag_prefix: str, crate_name: str) -> str:
    """Render a glob matching every tag a package could have produced."""
    return render_tag(tag_name, tag_prefix, crate_name, "*", "*", "*", "*")
