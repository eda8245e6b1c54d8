from __future__ import annotations

from datetime import timedelta

import structlog

from dowstats.observability.instrument import log_job
from dowstats.services.catchup import CatchUpResult
from dowstats.utils.weekday import utcnow

logger = structlog.get_logger(__name__)


@log_job("catchup-scan")
def run_catchup(ctx) -> CatchUpResult:
    """
    Periodic backfill: replay the last CATCHUP_LOOKBACK_HOURS of history for
    every known point. Directory outages propagate so the job is logged as
    failed; per-point outages are skipped inside the scanner.
    """
    offset = utcnow() - timedelta(hours=ctx.settings.CATCHUP_LOOKBACK_HOURS)
    return ctx.scanner.run_from(offset)
