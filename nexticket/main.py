import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from nexticket import config
from nexticket.api.routes.routes import router
from nexticket.domain.exceptions import NexTicketError, ValidationFailedError
from nexticket.infrastructure.db.session import engine, wait_for_database
from nexticket.infrastructure.db.models import Base

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="NexTicket Booking Core")

app.include_router(router)
logger = logging.getLogger(__name__)


def _error_body(exc: NexTicketError) -> dict:
    return {
        "success": False,
        "message": exc.message,
        "error": exc.code,
        "details": exc.details,
    }


@app.exception_handler(NexTicketError)
def handle_domain_error(request: Request, exc: NexTicketError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.http_status, content=_error_body(exc))


@app.exception_handler(RequestValidationError)
def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    error = ValidationFailedError(
        f"{field}: {first.get('msg', 'invalid request')}" if field else "Invalid request",
        fields=[".".join(str(part) for part in item.get("loc", ())) for item in exc.errors()],
    )
    return JSONResponse(status_code=error.http_status, content=_error_body(error))


@app.on_event("startup")
def on_startup() -> None:
    wait_for_database()
    Base.metadata.create_all(bind=engine)
