from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from invoicing.database import Base, engine
from invoicing.errors import InvoicingError
from invoicing.logging_config import configure_logging
from invoicing.rate_limit import limiter
from invoicing import models  # noqa: F401  registers tables on Base
from invoicing.routes import router

configure_logging()

app = FastAPI(title="Invoice Reconciliation Service")

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(router)

Base.metadata.create_all(bind=engine)


@app.exception_handler(InvoicingError)
async def invoicing_error_handler(request: Request, exc: InvoicingError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health", include_in_schema=False)
def health_check():
    return {"service": "invoicing", "status": "running"}
