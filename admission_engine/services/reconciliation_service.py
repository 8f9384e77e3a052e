"""Operator-triggered refresh of each pass's cached ``current_capacity``.

The cached counter is display-only; admission always recounts live demand.
Running this twice, or concurrently, converges on the same values.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from admission_engine.repository.data_repository import DataRepository
from admission_engine.utils.clock import today
from admission_engine.utils.config import Settings, get_settings
from admission_engine.utils.logger import format_fields, get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class ReconciliationReport:
    as_of: date
    updated: dict[int, int] = field(default_factory=dict)
    failed: dict[int, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class ReconciliationService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def recalculate_pass_capacities(self, as_of: Optional[date] = None) -> ReconciliationReport:
        """Set every pass's counter to its live demand on ``as_of``.

        A storage error on one pass is logged and reported; the remaining
        passes are still refreshed.
        """
        day = as_of or today(self._settings)
        report = ReconciliationReport(as_of=day)
        for coworking_pass in self._repository.list_passes():
            try:
                demand = self._repository.count_demand(coworking_pass.pass_id, day)
                self._repository.update_current_capacity(coworking_pass.pass_id, demand)
            except sqlite3.Error as exc:
                logger.exception(
                    "Capacity refresh failed | %s",
                    format_fields(pass_id=coworking_pass.pass_id, as_of=day),
                )
                report.failed[coworking_pass.pass_id] = str(exc)
                continue
            report.updated[coworking_pass.pass_id] = demand

        logger.info(
            "Pass capacities reconciled | %s",
            format_fields(as_of=day, updated=len(report.updated), failed=len(report.failed)),
        )
        return report
