"""
# Database Package

MongoDB connection management and the repositories used by the service.

```python
from document_vault.database import db_manager

await db_manager.connect()
await db_manager.create_indexes()
```

Each repository has a Motor-backed implementation and an in-memory counterpart selected when
`STORAGE_URI` is `memory://`.
"""

from document_vault.database.manager import DatabaseManager, db_manager

__all__ = ["DatabaseManager", "db_manager"]
