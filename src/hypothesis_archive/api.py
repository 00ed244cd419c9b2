"""Hypothesis API client."""

import os
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

import requests
from loguru import logger

from hypothesis_archive.config import API_TOKEN_ENV, API_TOKEN_FILES, DEFAULT_API_URL
from hypothesis_archive.errors import ConfigError, PermanentRemoteError, TransientRemoteError
from hypothesis_archive.models.annotation import Annotation, Group, format_timestamp
from hypothesis_archive.models.mutation import AddTags, Delete, MoveGroup, Mutation, RemoveTags
from hypothesis_archive.protocols import PageMark, RemotePage

# search_after is strictly-after; back off this much so records stamped exactly
# at the boundary are included again. Ties already seen are skipped with offset.
_OVERLAP = timedelta(milliseconds=1)


def read_api_token() -> str:
    """Return the API token from the environment or the first token file found."""
    token = os.environ.get(API_TOKEN_ENV, "").strip()
    if token:
        return token
    for token_path in API_TOKEN_FILES:
        try:
            return token_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            pass
    msg = (
        f"Cannot find Hypothesis API token: set ${API_TOKEN_ENV} "
        f"or create one of {[str(p) for p in API_TOKEN_FILES]!r}"
    )
    raise ConfigError(msg)


class HypothesisApi:
    """Thin client for the parts of the Hypothesis REST API the archive uses."""

    def __init__(
        self,
        *,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        token: str | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.sess = requests.Session()
        self.sess.headers["Authorization"] = f"Bearer {token or read_api_token()}"
        self.sess.headers["Accept"] = "application/json"
        self._user: str | None = None
        logger.debug("API ready: {} (timeout {}s)", self.api_url, self.timeout)

    def call(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> Any:
        """Invoke an API endpoint and return the decoded JSON (None for empty bodies)."""
        logger.debug("Making request: {} {} {}", method, path, repr(params or body or "")[:64])
        try:
            r = self.sess.request(
                method,
                f"{self.api_url}/{path}",
                params=params,
                json=body,
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            msg = f"{method} {path}: {e}"
            raise TransientRemoteError(msg) from e
        except requests.RequestException as e:
            msg = f"{method} {path}: {e}"
            raise PermanentRemoteError(msg) from e

        if r.status_code == 429 or r.status_code >= 500:
            msg = f"{method} {path} -> HTTP {r.status_code}"
            raise TransientRemoteError(msg, status=r.status_code)
        if r.status_code >= 400:
            msg = f"{method} {path} -> HTTP {r.status_code}: {r.text[:200]}"
            raise PermanentRemoteError(msg, status=r.status_code)
        if not r.content:
            return None
        return r.json()

    @property
    def user(self) -> str:
        """The authenticated account id, e.g. ``acct:alice@hypothes.is``."""
        if self._user is None:
            profile = self.call("GET", "profile")
            userid = (profile or {}).get("userid")
            if not userid:
                msg = "API token is not authenticated (profile has no userid)"
                raise PermanentRemoteError(msg)
            self._user = userid
        return self._user

    def fetch_page(self, since: datetime | None, state: str | None, limit: int) -> RemotePage:
        params: dict[str, Any] = {
            "user": self.user,
            "sort": "updated",
            "order": "asc",
            "limit": limit,
        }
        mark = PageMark.decode(state) if state else PageMark(boundary=since)
        if mark.boundary is not None:
            params["search_after"] = format_timestamp(mark.boundary - _OVERLAP)
        if mark.skip:
            params["offset"] = mark.skip

        data = self.call("GET", "search", params=params) or {}
        rows: list[dict[str, Any]] = data.get("rows", [])
        annotations = tuple(Annotation.from_api(row) for row in rows)
        return RemotePage(
            annotations=annotations,
            next_state=mark.advance(annotations).encode(),
            has_more=len(rows) >= limit,
        )

    def apply_batch(self, group: str, edits: Sequence[Mutation]) -> None:
        """Apply edits in order.

        Tag edits for one annotation are folded into a single PATCH of the
        full tag list, written before any later non-tag edit of that annotation.
        """
        logger.debug("Applying {} edit(s) in group {}", len(edits), group)
        pending_tags: dict[str, list[str]] = {}

        def write_tags(annotation_id: str) -> None:
            self.call(
                "PATCH",
                f"annotations/{annotation_id}",
                body={"tags": pending_tags.pop(annotation_id)},
            )

        for edit in edits:
            if isinstance(edit, AddTags | RemoveTags):
                if edit.id not in pending_tags:
                    current = self.call("GET", f"annotations/{edit.id}") or {}
                    pending_tags[edit.id] = list(current.get("tags") or [])
                tags = pending_tags[edit.id]
                if isinstance(edit, AddTags):
                    tags.extend(t for t in edit.tags if t not in tags)
                else:
                    pending_tags[edit.id] = [t for t in tags if t not in edit.tags]
                continue

            if edit.id in pending_tags:
                write_tags(edit.id)
            if isinstance(edit, Delete):
                self._delete(edit.id)
            elif isinstance(edit, MoveGroup):
                self.call("PATCH", f"annotations/{edit.id}", body={"group": edit.to_group})
            else:
                msg = f"unsupported edit: {edit!r}"
                raise TypeError(msg)

        for annotation_id in list(pending_tags):
            write_tags(annotation_id)

    def _delete(self, annotation_id: str) -> None:
        """DELETE is idempotent: an annotation that is already gone counts as deleted."""
        try:
            self.call("DELETE", f"annotations/{annotation_id}")
        except PermanentRemoteError as e:
            if e.status != 404:
                raise
            logger.info("Annotation {} was already deleted on the service", annotation_id)

    def list_groups(self) -> list[Group]:
        data = self.call("GET", "groups") or []
        return [Group(id=g["id"], name=g.get("name", "")) for g in data]
