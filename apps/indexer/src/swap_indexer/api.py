"""
FastAPI query API over the recorded swap series.

Read-only: serves the sink's in-memory view, never touches the store.

Run as part of the indexer (swap-indexer starts uvicorn alongside the
reconciliation worker), or build an app around any EventSink for tests.
"""

from typing import Callable, Optional

from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from swapcore.events import SwapEvent

from swap_indexer.sink import EventSink


DEFAULT_CHART_COUNT = 10
MAX_CHART_COUNT = 10_000

# Browser clients send these literals for an unset cursor
_EMPTY_CURSORS = {"", "null", "undefined"}


class ChartPoint(BaseModel):
    """One swap, as plotted by the chart frontend."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    timestamp: int = Field(..., description="Block time, unix seconds")
    signature: str = Field(..., description="Transaction signature (base58)")
    swapped_from: str = Field(..., description="Source mint")
    swapped_to: str = Field(..., description="Destination mint")
    amount_in: float
    amount_out: float
    price: float = Field(..., description="amountOut / amountIn")
    pool_price: Optional[float] = Field(None, description="Post-trade reserve ratio, same orientation")

    @classmethod
    def from_event(cls, event: SwapEvent) -> "ChartPoint":
        return cls(
            timestamp=event.timestamp,
            signature=event.signature,
            swapped_from=event.source_mint,
            swapped_to=event.dest_mint,
            amount_in=float(event.amount_in),
            amount_out=float(event.amount_out),
            price=float(event.price),
            pool_price=float(event.pool_price) if event.pool_price is not None else None,
        )


def normalize_cursor(after: Optional[str]) -> Optional[str]:
    if after is None or after.strip() in _EMPTY_CURSORS:
        return None
    return after.strip()


def create_app(sink: EventSink, stats: Optional[Callable[[], dict]] = None) -> FastAPI:
    """Build the API app.

    Args:
        sink: Event sink whose view is served.
        stats: Optional callable whose result is included in /health.
    """
    app = FastAPI(title="Swap Indexer", description="Recorded swaps of one token-swap pool")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.get("/v1/main/chart", response_model=list[ChartPoint])
    def chart(
        count: int = Query(DEFAULT_CHART_COUNT, ge=1, le=MAX_CHART_COUNT),
        after: Optional[str] = Query(None, description="Only swaps recorded after this signature"),
    ) -> list[ChartPoint]:
        events = sink.query(count, normalize_cursor(after))
        return [ChartPoint.from_event(event) for event in events]

    @app.get("/health")
    def health() -> dict:
        body = {"status": "ok", "events": len(sink)}
        if stats is not None:
            body["stats"] = stats()
        return body

    return app
