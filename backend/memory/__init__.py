from .database import SQLiteMemoryDB
from .health_store import HealthMemoryStore
from .memory_policy_guard import HealthMemoryError, MemoryCandidateError, MemoryPolicyGuard
from .record_store import RecordStore
from .service import MemoryService

__all__ = [
    "SQLiteMemoryDB",
    "HealthMemoryStore",
    "HealthMemoryError",
    "MemoryCandidateError",
    "MemoryPolicyGuard",
    "MemoryService",
    "RecordStore",
]
