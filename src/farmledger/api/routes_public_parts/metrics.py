from __future__ import annotations

from fastapi import APIRouter, Request, Response

from farmledger.runtime.metrics import format_prometheus, metrics_enabled, set_gauge


router = APIRouter()


def _refresh_ledger_gauges(request: Request) -> None:
    rt = getattr(request.app.state, "runtime", None)
    ledger = getattr(rt, "ledger", None)
    if ledger is None:
        return
    p = ledger.params()
    set_gauge("pools", ledger.pool_length())
    set_gauge("total_weight", int(p.get("total_weight") or 0))
    set_gauge("reward_rate_per_second", int(p.get("reward_rate_per_second") or 0))
    set_gauge("events_buffered", len(ledger.events))


@router.get("/metrics")
def metrics(request: Request) -> Response:
    """Prometheus-style counters plus ledger gauges read at scrape time.

    Off unless FARMLEDGER_METRICS_ENABLED=1; a ledger that is not attached
    yet still serves the process counters.
    """
    if not metrics_enabled():
        return Response(status_code=404, content="not_found\n", media_type="text/plain")
    _refresh_ledger_gauges(request)
    return Response(content=format_prometheus(), media_type="text/plain; version=0.0.4")
