"""Reconciliation trigger and health endpoints for the external scheduler"""

from fastapi import APIRouter, Depends

from moony_analytics.api.v1.schemas import ReconciliationHealthResponse, ScanResponse
from moony_analytics.api.dependencies import get_reconciliation_scanner
from moony_analytics.services.reconciliation import ReconciliationScanner

router = APIRouter()


@router.post("/reconciliation/scan", response_model=ScanResponse)
async def run_reconciliation_scan(
    scanner: ReconciliationScanner = Depends(get_reconciliation_scanner),
):
    """Re-drive every connected user still missing statistics"""
    report = await scanner.scan()
    return ScanResponse(processed=report.processed, succeeded=report.succeeded, failed=report.failed)


@router.get("/reconciliation/health", response_model=ReconciliationHealthResponse)
def reconciliation_health(
    scanner: ReconciliationScanner = Depends(get_reconciliation_scanner),
):
    health = scanner.health_check()
    return ReconciliationHealthResponse(
        status=health.status,
        users_needing_statistics=health.pending_count,
        oldest_pending_connection=health.oldest_pending_connection,
    )
