"""missionsync - two-way sync between markdown notes and an issue tracker.

High-level public API:

from missionsync import Reconciler, SyncContext, VaultStorage, load_config

cfg = load_config("missionsync.config.yaml")
with SyncContext.open(cfg) as context:
    reconciler = Reconciler(context, VaultStorage(cfg.root))
    asyncio.run(reconciler.fetch_issues("Roadmap.md"))

The CLI (``missionsync``) is a thin layer over the same objects.
"""

from __future__ import annotations

from .config import SyncConfig, default_config, load_config
from .context import SyncContext
from .errors import ConfigurationError, MissionSyncError, NotFoundError, ParseError, RemoteError
from .models import Issue, Milestone, Project
from .note import NoteSnapshot
from .reconcile import ReconcileResult, Reconciler
from .storage import VaultStorage

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "Issue",
    "Milestone",
    "MissionSyncError",
    "NoteSnapshot",
    "NotFoundError",
    "ParseError",
    "Project",
    "ReconcileResult",
    "Reconciler",
    "RemoteError",
    "SyncConfig",
    "SyncContext",
    "VaultStorage",
    "__version__",
    "default_config",
    "load_config",
]
