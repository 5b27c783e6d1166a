import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from stock_ledger.app.api.v1.router import router as v1_router
from stock_ledger.app.core.config import settings
from stock_ledger.services.errors import LedgerError

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Stock Ledger", version="0.1.0")
app.include_router(v1_router, prefix="/v1")


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
