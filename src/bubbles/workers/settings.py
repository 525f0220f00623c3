"""arq worker settings module.

Import path for arq CLI: arq bubbles.workers.settings.WorkerSettings
"""

from __future__ import annotations

from bubbles.workers.ledger_worker import LedgerWorkerSettings as WorkerSettings

__all__ = ["WorkerSettings"]
