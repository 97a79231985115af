"""Prometheus metrics endpoint.

Scraped by Prometheus on an interval.  The body is plain text in the
Prometheus exposition format, not JSON:

  # HELP engine_coins_awarded_total Coins credited to learners
  # TYPE engine_coins_awarded_total counter
  engine_coins_awarded_total{source="topic_completion"} 1280.0
  http_requests_total{method="POST",endpoint="/v1/topics/{topic_id}/complete",status_code="201"} 64.0

Restrict /metrics to the scraper's network in production; request
rates and error counts per route are not for learners to read.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
