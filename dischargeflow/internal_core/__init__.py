from .config import DischargeConfig, load_config
from .record_store import InMemoryRecordStore, RecordNotFoundError

__all__ = ["DischargeConfig", "load_config", "InMemoryRecordStore", "RecordNotFoundError"]
