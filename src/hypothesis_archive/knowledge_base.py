"""Single entry point tying the store, sync, mutation log and materializer together."""

from types import TracebackType

from loguru import logger

from hypothesis_archive.config import Config
from hypothesis_archive.core.database.store import AnnotationStore
from hypothesis_archive.core.sync.engine import SyncEngine
from hypothesis_archive.core.tree.materializer import Materializer
from hypothesis_archive.core.write.mutations import MutationLog
from hypothesis_archive.core.write.pusher import Pusher
from hypothesis_archive.core.write.retry import RetryPolicy
from hypothesis_archive.models.annotation import (
    Annotation,
    AnnotationFilter,
    BuildSummary,
    FlushSummary,
    Group,
    SyncSummary,
)
from hypothesis_archive.models.mutation import Mutation, QueuedMutation
from hypothesis_archive.protocols import RemoteClient
from hypothesis_archive.writer import StagedWriter


class KnowledgeBase:
    """A local annotation archive bound to one configuration.

    The remote client is only created when a command needs the service, so
    offline operations (query, materialize, enqueue) work without a token.
    """

    def __init__(self, config: Config, client: RemoteClient | None = None) -> None:
        self.config = config
        config.storage_dir.mkdir(parents=True, exist_ok=True)
        self.store = AnnotationStore(config.db_path)
        self.log = MutationLog(self.store)
        self._client = client

    def __enter__(self) -> "KnowledgeBase":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        self.store.close()

    @property
    def client(self) -> RemoteClient:
        if self._client is None:
            from hypothesis_archive.api import HypothesisApi

            self._client = HypothesisApi(
                api_url=self.config.api_url, timeout=self.config.request_timeout
            )
        return self._client

    # --- Pull ---

    def sync(self) -> SyncSummary:
        """Pull every annotation changed since the last sync."""
        engine = SyncEngine(self.store, self.client, page_size=self.config.page_size)
        return engine.sync()

    # --- Read ---

    def query(self, flt: AnnotationFilter | None = None) -> list[Annotation]:
        return list(self.store.scan(flt))

    def tags(self) -> dict[str, int]:
        return self.store.tags()

    def uris(self, flt: AnnotationFilter | None = None) -> list[str]:
        return self.store.uris(flt)

    def groups(self) -> list[Group]:
        return self.client.list_groups()

    # --- Write ---

    def enqueue_mutation(self, mutation: Mutation) -> int:
        seq = self.log.append(mutation)
        logger.debug("Queued {!r} as #{}", mutation, seq)
        return seq

    def flush_mutations(self) -> FlushSummary:
        pusher = Pusher(
            self.store,
            self.log,
            self.client,
            retry=RetryPolicy.from_config(self.config),
        )
        return pusher.flush()

    def pending_mutations(self) -> list[QueuedMutation]:
        return self.log.pending()

    def discard_mutation(self, seq: int) -> bool:
        return self.log.discard(seq)

    # --- Build ---

    def materialize(
        self, flt: AnnotationFilter | None = None, *, dry_run: bool = False
    ) -> BuildSummary:
        """Render the (filtered) store into the configured output directory."""
        materializer = Materializer(self.config)
        writer = StagedWriter(
            self.config.output_dir, extension=self.config.file_extension, dry_run=dry_run
        )
        return materializer.build(self.store.scan(flt), writer)
