import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shop_erp_core.config import settings
from shop_erp_core.errors import LedgerError
from shop_erp_core.logging_config import setup_logging
from shop_erp_core.lookups import router as lookups_router
from shop_erp_core.inventory_api import router as inventory_router
from shop_erp_core.production_api import router as production_router
from shop_erp_core.sellers_api import router as sellers_router

setup_logging(settings.log_level, settings.log_dir)
logger = logging.getLogger(__name__)

app = FastAPI(title="Shop ERP Core API")
app.include_router(lookups_router)
app.include_router(inventory_router)
app.include_router(production_router)
app.include_router(sellers_router)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s -> %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


@app.get("/health")
async def health():
    return {"ok": True, "environment": settings.environment}
