"""Render resolved annotations into a tree of output documents."""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

from loguru import logger

from hypothesis_archive.config import Config
from hypothesis_archive.core.tree.resolver import HierarchyResolver, Resolved
from hypothesis_archive.core.tree.templates import TemplateRenderer
from hypothesis_archive.errors import PathCollisionError
from hypothesis_archive.models.annotation import Annotation, BuildSummary
from hypothesis_archive.writer import StagedWriter

INDEX_NAME = "_index"
ROOT_TITLE = "Index"


@dataclass
class TreeNode:
    """One hierarchy path prefix.

    A node holding annotations is a page; one with only children is a section.
    """

    path: tuple[str, ...]
    raw_path: tuple[str, ...]
    children: dict[str, "TreeNode"] = field(default_factory=dict)
    annotations: list[Resolved] = field(default_factory=list)
    count: int = 0

    @property
    def is_page(self) -> bool:
        return bool(self.annotations)

    @property
    def title(self) -> str:
        if not self.raw_path:
            return ROOT_TITLE
        return self.raw_path[-1] or self.path[-1]

    def walk(self) -> Iterator["TreeNode"]:
        """Pre-order traversal, children in insertion order."""
        yield self
        for child in self.children.values():
            yield from child.walk()

    def walk_annotations(self) -> Iterator[Resolved]:
        for node in self.walk():
            yield from node.annotations


def build_tree(resolved: Iterable[Resolved]) -> TreeNode:
    """Group annotations by path.

    Input is placed in (sort key, created, id) order first, so both the
    children order and each page's annotation order are deterministic.

    Raises:
        PathCollisionError: Two different raw paths reached the same node.
    """
    root = TreeNode(path=(), raw_path=())
    for item in sorted(resolved, key=lambda r: r.order):
        node = root
        node.count += 1
        for depth in range(len(item.path)):
            key = item.path[depth].casefold()
            child = node.children.get(key)
            if child is None:
                child = TreeNode(path=item.path[: depth + 1], raw_path=item.raw_path[: depth + 1])
                node.children[key] = child
            elif child.raw_path != item.raw_path[: depth + 1]:
                first = next(child.walk_annotations(), None)
                raise PathCollisionError(
                    "/".join(child.path),
                    first.annotation.id if first else "?",
                    item.annotation.id,
                )
            node = child
            node.count += 1
        node.annotations.append(item)
    return root


class Materializer:
    """Turn a set of annotations into rendered documents.

    Output paths are the sanitized hierarchy path plus the file extension;
    the root index is ``_index`` plus the extension. Every output path is
    checked for uniqueness (case-insensitively) before anything is written.
    """

    def __init__(
        self,
        config: Config,
        *,
        resolver: HierarchyResolver | None = None,
        renderer: TemplateRenderer | None = None,
    ) -> None:
        self.renderer = renderer or TemplateRenderer()
        self.resolver = resolver or HierarchyResolver(
            config.hierarchy,
            config.sort,
            max_component_length=config.max_component_length,
            renderer=self.renderer,
        )
        self.extension = config.file_extension
        self._annotation = self.renderer.compile(config.annotation_template, "annotation")
        self._page = self.renderer.compile(config.page_template, "page")
        self._index = self.renderer.compile(config.index_template, "index")

    def output_path(self, node: TreeNode) -> str:
        return "/".join(node.path or (INDEX_NAME,)) + self.extension

    def _child_link(self, parent: TreeNode, child: TreeNode) -> str:
        rel = child.path[-1] + self.extension
        if parent.path:
            rel = parent.path[-1] + "/" + rel
        return quote(rel)

    def _children_vars(self, node: TreeNode) -> list[dict[str, Any]]:
        return [
            {
                "title": child.title,
                "link": self._child_link(node, child),
                "count": child.count,
                "is_page": child.is_page,
            }
            for child in node.children.values()
        ]

    def render_page(self, node: TreeNode) -> str:
        rendered = [
            self.renderer.render(self._annotation, "annotation", item.context.as_vars())
            for item in node.annotations
        ]
        return self.renderer.render(
            self._page,
            "page",
            {
                "title": node.title,
                "path": "/".join(node.raw_path),
                "raw_path": list(node.raw_path),
                "file": self.output_path(node),
                "count": len(node.annotations),
                "total": node.count,
                "annotations": "".join(rendered),
                "children": self._children_vars(node),
            },
        )

    def render_index(self, node: TreeNode) -> str:
        return self.renderer.render(
            self._index,
            "index",
            {
                "title": node.title,
                "path": "/".join(node.raw_path),
                "file": self.output_path(node),
                "count": node.count,
                "children": self._children_vars(node),
            },
        )

    def plan(self, annotations: Iterable[Annotation]) -> list[tuple[str, TreeNode]]:
        """Resolve, group and assign output paths, without rendering."""
        root = build_tree(self.resolver.resolve_all(annotations))
        claimed: dict[str, TreeNode] = {}
        plan: list[tuple[str, TreeNode]] = []
        for node in root.walk():
            rel = self.output_path(node)
            other = claimed.get(rel.casefold())
            if other is not None:
                first = next(other.walk_annotations(), None)
                second = next(node.walk_annotations(), None)
                raise PathCollisionError(
                    rel,
                    first.annotation.id if first else "?",
                    second.annotation.id if second else "?",
                )
            claimed[rel.casefold()] = node
            plan.append((rel, node))
        return plan

    def build(self, annotations: Iterable[Annotation], writer: StagedWriter) -> BuildSummary:
        """Render everything into ``writer`` and swap it into place.

        Any failure discards the staged output; the previous output stays.
        """
        plan = self.plan(annotations)
        pages = sections = total = 0
        writer.open()
        try:
            for rel, node in plan:
                if node.is_page:
                    writer.make_file(rel, self.render_page(node))
                    pages += 1
                    total += len(node.annotations)
                else:
                    writer.make_file(rel, self.render_index(node))
                    sections += 1
            stats = writer.commit()
        except BaseException:
            writer.abort()
            raise

        logger.info(
            "Built {} page(s), {} section(s) from {} annotation(s)", pages, sections, total
        )
        return BuildSummary(
            pages=pages,
            sections=sections,
            annotations=total,
            created=stats["created"],
            changed=stats["changed"],
            unchanged=stats["unchanged"],
            removed=stats["removed"],
            files=tuple(rel for rel, _node in plan),
        )
