"""Storage collaborators: protocols plus in-memory and SQL implementations."""

from .base import (AutoValuationStore, CollateralStore, EncumbranceStore,
                   TitleRecordStore, bounded)
from .memory import (InMemoryAutoValuationStore, InMemoryCollateralStore,
                     InMemoryEncumbranceStore, InMemoryTitleRecordStore)
from .sql import (SQLAutoValuationStore, SQLCollateralStore,
                  SQLEncumbranceStore, SQLTitleRecordStore, init_db)

__all__ = [
    "AutoValuationStore",
    "CollateralStore",
    "EncumbranceStore",
    "InMemoryAutoValuationStore",
    "InMemoryCollateralStore",
    "InMemoryEncumbranceStore",
    "InMemoryTitleRecordStore",
    "SQLAutoValuationStore",
    "SQLCollateralStore",
    "SQLEncumbranceStore",
    "SQLTitleRecordStore",
    "TitleRecordStore",
    "bounded",
    "init_db",
]
