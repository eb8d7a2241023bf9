"""Storage subpackage: SQLite-backed stores"""

from .sqlite_store import ArtifactStore, Database, DocumentStore, PassageStore, ReviewStateStore

__all__ = ['ArtifactStore', 'Database', 'DocumentStore', 'PassageStore', 'ReviewStateStore']
