"""arq worker settings module.

Import path for arq CLI: arq wastewise.workers.settings.WorkerSettings
"""

from __future__ import annotations

from wastewise.workers.sweeper import SweeperWorkerSettings as WorkerSettings

__all__ = ["WorkerSettings"]
