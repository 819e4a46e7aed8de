"""
ZoneSentinel Batch Recalculation Service

Recalculates many cells with per-cell failure isolation: an invalid or
failing cell is recorded as a CellError and never aborts its siblings.

Concurrency:
    - Per-cell work runs on the event loop, bounded by a semaphore
    - Results are gathered with return_exceptions=True, so one failure
      cannot cancel the rest
    - Duplicate identifiers are processed independently, in input order
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional, Sequence
import logging

from ..config import BatchConfig
from ..exceptions import ErrorCode, InvalidInputError, ZoneSentinelError
from ..models import BatchResult, CellError, CellResult, RiskZoneScore
from .scoring import RiskZoneScoreEngine


logger = logging.getLogger(__name__)


def _cell_error(cell_id: Any, error: BaseException) -> CellError:
    if isinstance(error, ZoneSentinelError):
        code = error.code.value
        message = error.message
    else:
        code = ErrorCode.INTERNAL_ERROR.value
        message = str(error) or type(error).__name__
    return CellError(
        cell_id=str(cell_id),
        error_type=type(error).__name__,
        code=code,
        message=message,
    )


class BatchRecalculationService:
    """
    Fail-soft batch front end for the score engine.

    Example:
        service = BatchRecalculationService(engine)
        result = await service.recalculate_many(["862a1072fffffff", "bad"])
        result.success_count, result.error_count  # (1, 1)
    """

    def __init__(
        self,
        engine: RiskZoneScoreEngine,
        config: Optional[BatchConfig] = None,
    ):
        self._engine = engine
        self._config = config or BatchConfig()
        if self._config.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

    async def recalculate_many(self, cell_ids: Sequence[str]) -> BatchResult:
        """
        Recalculate every identifier, isolating failures per cell.

        Raises:
            InvalidInputError: the list is empty, not a list, or too large.
                Individual bad identifiers never raise; they are reported.
        """
        if isinstance(cell_ids, (str, bytes)) or not isinstance(cell_ids, Sequence):
            raise InvalidInputError("cell_ids must be a list of cell identifiers")
        if not cell_ids:
            raise InvalidInputError("cell_ids must not be empty")
        if len(cell_ids) > self._config.max_batch_size:
            raise InvalidInputError(
                f"Batch of {len(cell_ids)} exceeds the limit of {self._config.max_batch_size}",
                details={"size": len(cell_ids), "limit": self._config.max_batch_size},
            )

        start = time.perf_counter()
        semaphore = asyncio.Semaphore(self._config.max_concurrency)

        async def _run(cell_id: str) -> RiskZoneScore:
            async with semaphore:
                return await self._engine.recalculate_zone(cell_id)

        outcomes = await asyncio.gather(
            *[_run(cell_id) for cell_id in cell_ids],
            return_exceptions=True,
        )

        details: List[CellResult] = []
        errors: List[CellError] = []
        for cell_id, outcome in zip(cell_ids, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                error = _cell_error(cell_id, outcome)
                errors.append(error)
                details.append(CellResult(cell_id=error.cell_id, success=False, error=error))
                logger.warning(
                    f"Recalculation failed for cell {error.cell_id}: "
                    f"{error.error_type}: {error.message}"
                )
                continue
            details.append(CellResult(
                cell_id=str(cell_id),
                success=True,
                final_score=outcome.final_score,
                risk_level=outcome.risk_level,
            ))

        elapsed_ms = (time.perf_counter() - start) * 1000
        result = BatchResult(
            success_count=len(details) - len(errors),
            error_count=len(errors),
            errors=errors,
            details=details,
            elapsed_ms=round(elapsed_ms, 2),
        )

        logger.info(
            f"Batch recalculation: {result.success_count} succeeded, "
            f"{result.error_count} failed of {len(cell_ids)} in {elapsed_ms:.1f}ms"
        )
        return result

    async def handle_recalculate_request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Batch trigger entry point.

        Accepts {"cellIds": [...]} and returns
        {"successCount", "errorCount", "perCellDetails"}.

        Raises:
            InvalidInputError: payload malformed or cellIds empty
        """
        if not isinstance(payload, dict):
            raise InvalidInputError("Request body must be an object")

        cell_ids = payload.get("cellIds")
        if not isinstance(cell_ids, list):
            raise InvalidInputError("cellIds must be a list")

        result = await self.recalculate_many(cell_ids)
        return result.to_response()
