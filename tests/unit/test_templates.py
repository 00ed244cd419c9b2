"""Tests for template helpers and the annotation context."""

from datetime import UTC, datetime

import pytest

from hypothesis_archive.core.tree.templates import (
    AnnotationContext,
    TemplateRenderer,
    date,
    domain,
    first_tag,
    sentence,
)
from hypothesis_archive.errors import TemplateError
from tests.unit.fakes import make_annotation


def test_domain_strips_www_and_ignores_non_urls() -> None:
    assert domain("https://www.example.com/a?b=c") == "example.com"
    assert domain("http://docs.python.org:8080/3/") == "docs.python.org:8080"
    assert domain("urn:x-pdf:abc123") == ""
    assert domain(None) == ""


def test_date_formats_iso_strings_and_datetimes() -> None:
    assert date("2024-03-01T12:00:00.000000+00:00") == "2024-03-01"
    assert date(datetime(2024, 3, 1, tzinfo=UTC), "%Y/%m") == "2024/03"
    assert date("") == ""
    assert date("not a date") == "not a date"


def test_first_tag_and_sentence() -> None:
    assert first_tag(["python", "bar"]) == "python"
    assert first_tag([]) == ""
    assert sentence("Use pathlib. It is nicer.") == "Use pathlib."
    assert sentence("line one\nline two") == "line one"
    assert sentence("x" * 100, 10) == "x" * 10
    assert sentence(None) == ""


def test_context_from_annotation() -> None:
    annotation = make_annotation(
        "abc", uri="https://www.example.com/page", tags=["x", "y"], text="hello"
    )
    ctx = AnnotationContext.from_annotation(annotation)

    assert ctx.domain == "example.com"
    assert ctx.base_uri == "www.example.com/page"
    assert ctx.incontext == "https://hyp.is/abc/www.example.com/page"
    assert ctx.created == "2024-03-01T12:00:00.000000+00:00"


def test_lookup_is_total() -> None:
    ctx = AnnotationContext.from_annotation(make_annotation("abc", tags=["x", "y"]))

    assert ctx.lookup("tags") == ["x", "y"]
    assert ctx.lookup("id") == "abc"
    assert ctx.lookup("no_such_field") == ""


def test_undefined_names_render_empty() -> None:
    renderer = TemplateRenderer()
    template = renderer.compile("[{{ missing }}{{ missing.deeper }}{{ missing | upper }}]", "t")

    assert renderer.render(template, "t", {}) == "[]"


def test_helpers_are_available_as_filters() -> None:
    renderer = TemplateRenderer()
    template = renderer.compile(
        "{{ uri | domain }} {{ uri | strip_scheme }} {{ created | date('%Y') }}", "t"
    )
    variables = AnnotationContext.from_annotation(
        make_annotation("a", uri="https://www.example.com/x")
    ).as_vars()

    assert renderer.render(template, "t", variables) == "example.com www.example.com/x 2024"


def test_no_html_escaping() -> None:
    renderer = TemplateRenderer()
    template = renderer.compile("{{ text }}", "t")

    assert renderer.render(template, "t", {"text": "<b>&</b>"}) == "<b>&</b>"


def test_compile_error_is_template_error() -> None:
    with pytest.raises(TemplateError) as exc_info:
        TemplateRenderer().compile("{{ title ", "hierarchy[0]")

    assert exc_info.value.source == "hierarchy[0]"


def test_render_error_is_template_error() -> None:
    renderer = TemplateRenderer()
    template = renderer.compile("{{ 'x' + 1 }}", "annotation")

    with pytest.raises(TemplateError, match="annotation"):
        renderer.render(template, "annotation", {})
