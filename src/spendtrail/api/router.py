from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from spendtrail.api.deps import get_storage
from spendtrail.core.storage import ObjectStorage, diagnose_storage
from spendtrail.modules.expenses.api import router as expenses_router
from spendtrail.modules.identity.api import router as identity_router
from spendtrail.modules.receipts.api import router as receipts_router
from spendtrail.modules.reports.api import router as reports_router

router = APIRouter()

router.include_router(identity_router, prefix="/api")
router.include_router(receipts_router, prefix="/api")
router.include_router(expenses_router, prefix="/api")
router.include_router(reports_router, prefix="/api")


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz/storage")
def healthz_storage(
    *, write_test: bool = False, storage: ObjectStorage = Depends(get_storage)
) -> JSONResponse:
    result = diagnose_storage(storage, write_test=write_test)
    status_code = 200 if result.get("ok") else 503
    return JSONResponse(status_code=status_code, content=result)
