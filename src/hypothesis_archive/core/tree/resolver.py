"""Resolve each annotation to a hierarchy path and an ordering key."""

import hashlib
import re
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from hypothesis_archive.core.tree.templates import AnnotationContext, TemplateRenderer
from hypothesis_archive.models.annotation import Annotation

# Group for annotations whose expression rendered empty. Never produced by
# sanitize_component, which strips leading underscores.
EMPTY_GROUP = "_ungrouped"

# Filesystem-safe component characters (any script's letters and digits are kept).
_UNSAFE_RE = re.compile(r"[^\w()_. -]+", flags=re.UNICODE)

_HASH_LEN = 8


def _short_hash(raw: str) -> str:
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:_HASH_LEN]


def _with_suffix(token: str, raw: str, max_length: int) -> str:
    """Cut ``token`` so that ``token-<hash of raw>`` fits in max_length."""
    keep = max_length - _HASH_LEN - 1
    return token[:keep].rstrip("_. -") + "-" + _short_hash(raw)


def sanitize_component(raw: str, max_length: int) -> str:
    """Turn one raw group key into a filesystem-safe path component.

    Unsafe runs collapse to ``_``; leading and trailing ``_. -`` are stripped
    so a component can never be hidden, relative, or collide with the index
    file name. Over-long components are truncated and suffixed with a hash of
    the full raw value, so keys that differ only past the cut stay distinct.
    """
    token = _UNSAFE_RE.sub("_", raw).strip("_. -") or "unnamed"
    if len(token) > max_length:
        token = _with_suffix(token, raw, max_length)
    return token


@dataclass(frozen=True)
class Resolved:
    """An annotation placed in the output tree.

    ``raw_path`` holds the expression results as rendered (empty string for an
    empty result); ``path`` holds the sanitized components.
    """

    annotation: Annotation
    context: AnnotationContext
    raw_path: tuple[str, ...]
    path: tuple[str, ...]
    sort_key: str

    @property
    def order(self) -> tuple[str, str, str]:
        """Total order inside a page: sort key, then created, then id."""
        return (self.sort_key, self.context.created, self.annotation.id)


class HierarchyResolver:
    """Evaluate hierarchy and sort expressions against annotations."""

    def __init__(
        self,
        hierarchy: Sequence[str],
        sort: str,
        *,
        max_component_length: int,
        renderer: TemplateRenderer | None = None,
    ) -> None:
        self.renderer = renderer or TemplateRenderer()
        self.max_component_length = max_component_length
        self._hierarchy = [
            (f"hierarchy[{i}]", self.renderer.compile(expr, f"hierarchy[{i}]"))
            for i, expr in enumerate(hierarchy)
        ]
        self._sort = self.renderer.compile(sort, "sort")

    def evaluate(self, annotation: Annotation) -> tuple[AnnotationContext, tuple[str, ...], str]:
        """Return (context, raw hierarchy path, sort key) for one annotation."""
        context = AnnotationContext.from_annotation(annotation)
        variables = context.as_vars()
        raw_path = tuple(
            " ".join(self.renderer.render(template, name, variables).split())
            for name, template in self._hierarchy
        )
        sort_key = self.renderer.render(self._sort, "sort", variables).strip()
        return context, raw_path, sort_key

    def resolve_all(self, annotations: Iterable[Annotation]) -> list[Resolved]:
        """Resolve a whole build at once.

        Sibling components are disambiguated together: when different raw keys
        under the same parent sanitize to the same token (compared
        case-insensitively), every raw key except the smallest gets a hash
        suffix. The outcome does not depend on input order.
        """
        evaluated = [(a, *self.evaluate(a)) for a in annotations]
        paths: list[list[str]] = [[] for _ in evaluated]

        for level in range(len(self._hierarchy)):
            proposals: list[tuple[tuple[str, ...], str]] = []
            claims: dict[tuple[tuple[str, ...], str], set[str]] = defaultdict(set)
            for i, (_a, _ctx, raw_path, _key) in enumerate(evaluated):
                parent = tuple(paths[i])
                raw = raw_path[level]
                token = sanitize_component(raw, self.max_component_length) if raw else EMPTY_GROUP
                proposals.append((parent, token))
                claims[(parent, token.casefold())].add(raw)

            for i, (parent, token) in enumerate(proposals):
                raw = evaluated[i][2][level]
                rivals = claims[(parent, token.casefold())]
                if len(rivals) > 1 and raw != min(rivals):
                    token = _with_suffix(token, raw, self.max_component_length)
                paths[i].append(token)

        return [
            Resolved(
                annotation=annotation,
                context=context,
                raw_path=raw_path,
                path=tuple(path),
                sort_key=sort_key,
            )
            for (annotation, context, raw_path, sort_key), path in zip(evaluated, paths, strict=True)
        ]
