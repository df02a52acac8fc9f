from fastapi import APIRouter, Depends

from orderdesk.auth import RequestContext, get_request_context
from orderdesk.dashboard import MetricsAggregator
from orderdesk.deps import get_aggregator
from orderdesk.models import DashboardMetrics

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/metrics", response_model=DashboardMetrics)
async def dashboard_metrics(
    _: RequestContext = Depends(get_request_context),
    aggregator: MetricsAggregator = Depends(get_aggregator),
) -> DashboardMetrics:
    """Total orders, pending orders, orders shown as in transit, total revenue. Computed per request."""
    return await aggregator.dashboard_metrics()
