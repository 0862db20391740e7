from mergemaster.memory.checkpoints import Checkpoint, CheckpointStore
from mergemaster.memory.pruning import prune_sessions
from mergemaster.memory.session_manager import SessionMetadata, SessionMetadataStore
from mergemaster.memory.store import MemoryStore

__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "MemoryStore",
    "SessionMetadata",
    "SessionMetadataStore",
    "prune_sessions",
]
