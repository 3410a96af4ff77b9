from __future__ import annotations

from fastapi import APIRouter, Depends

from coupons_api.core.metrics import request_metrics
from coupons_api.deps import require_admin

router = APIRouter(prefix="/internal/metrics", tags=["internal-metrics"])


@router.get("")
def endpoint_metrics(_admin: str = Depends(require_admin)):
    return {"endpoints": request_metrics.snapshot()}
