"""Hypothesis annotation archive and knowledge-base builder."""

from hypothesis_archive.api import HypothesisApi
from hypothesis_archive.config import Config, load_config
from hypothesis_archive.knowledge_base import KnowledgeBase
from hypothesis_archive.protocols import RemoteClient, RemotePage
from hypothesis_archive.writer import StagedWriter

__all__ = [
    "Config",
    "HypothesisApi",
    "KnowledgeBase",
    "RemoteClient",
    "RemotePage",
    "StagedWriter",
    "load_config",
]
