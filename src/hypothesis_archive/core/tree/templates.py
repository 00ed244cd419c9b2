"""Jinja2 rendering with a fixed helper set and a typed annotation context.

Templates only ever see plain strings and lists built by
``AnnotationContext.as_vars``; an unknown name renders as an empty string.
"""

import re
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any
from urllib.parse import urlsplit

import jinja2
from jinja2 import ChainableUndefined, Environment

from hypothesis_archive.errors import TemplateError
from hypothesis_archive.models.annotation import (
    Annotation,
    format_timestamp,
    parse_timestamp,
    strip_scheme,
)


def domain(uri: Any) -> str:
    """Host part of a URI (``www.`` removed); empty for non-URLs."""
    uri = str(uri or "")
    host = urlsplit(uri).netloc if "://" in uri else ""
    return host.removeprefix("www.")


def _strip_scheme(uri: Any) -> str:
    return strip_scheme(str(uri or ""))


def date(value: Any, fmt: str = "%Y-%m-%d") -> str:
    """Format a timestamp (datetime or ISO string); empty input stays empty."""
    if isinstance(value, datetime):
        return value.strftime(fmt)
    text = str(value or "")
    if not text:
        return ""
    try:
        return parse_timestamp(text).strftime(fmt)
    except ValueError:
        return text


def first_tag(tags: Any) -> str:
    if isinstance(tags, str):
        return tags
    return next(iter(tags or ()), "")


def sentence(text: Any, limit: int = 80) -> str:
    """First sentence (or line) of a text, cut to ``limit`` characters."""
    text = str(text or "").strip()
    first = re.split(r"(?<=[.!?])\s|\n", text, maxsplit=1)[0].strip()
    return first[:limit].rstrip()


HELPERS = {
    "domain": domain,
    "strip_scheme": _strip_scheme,
    "date": date,
    "first_tag": first_tag,
    "sentence": sentence,
}


def make_environment() -> Environment:
    env = Environment(
        undefined=ChainableUndefined,
        autoescape=False,
        keep_trailing_newline=True,
    )
    env.filters.update(HELPERS)
    return env


@dataclass(frozen=True)
class AnnotationContext:
    """The fields an expression or annotation template may reference."""

    id: str
    uri: str
    base_uri: str
    domain: str
    title: str
    text: str
    quote: str
    tags: tuple[str, ...]
    created: str
    updated: str
    group: str
    user: str
    incontext: str

    @classmethod
    def from_annotation(cls, annotation: Annotation) -> "AnnotationContext":
        return cls(
            id=annotation.id,
            uri=annotation.uri,
            base_uri=strip_scheme(annotation.uri),
            domain=domain(annotation.uri),
            title=annotation.title,
            text=annotation.text,
            quote=annotation.quote,
            tags=annotation.tags,
            created=format_timestamp(annotation.created),
            updated=format_timestamp(annotation.updated),
            group=annotation.group,
            user=annotation.user,
            incontext=f"https://hyp.is/{annotation.id}/{strip_scheme(annotation.uri)}",
        )

    def lookup(self, name: str) -> str | list[str]:
        """Value of field ``name``; never fails, unknown names give ""."""
        if name not in _FIELD_NAMES:
            return ""
        value = getattr(self, name)
        return list(value) if isinstance(value, tuple) else value

    def as_vars(self) -> dict[str, Any]:
        return {name: self.lookup(name) for name in _FIELD_NAMES}


_FIELD_NAMES = tuple(f.name for f in fields(AnnotationContext))


class TemplateRenderer:
    """Compile and render templates, mapping every Jinja failure to TemplateError."""

    def __init__(self) -> None:
        self.env = make_environment()

    def compile(self, source: str, name: str) -> jinja2.Template:
        try:
            return self.env.from_string(source)
        except jinja2.TemplateError as e:
            raise TemplateError(name, str(e)) from e

    def render(self, template: jinja2.Template, name: str, variables: dict[str, Any]) -> str:
        try:
            return template.render(variables)
        except (jinja2.TemplateError, TypeError, ValueError) as e:
            raise TemplateError(name, str(e)) from e
