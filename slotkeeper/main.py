from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from slotkeeper.api.v1.api import api_router
from slotkeeper.core.config import settings
from slotkeeper.core.errors import ReservationError, reservation_error_handler
from slotkeeper.core.logging import setup_logging
from slotkeeper.core.middleware import RequestContextMiddleware

setup_logging()

app = FastAPI(title=settings.APP_NAME)

# CORS: use CORS_ORIGINS from env in production; default to localhost for dev
_default_origins = ["http://127.0.0.1:8080", "http://localhost:8080"]
_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] if settings.CORS_ORIGINS else _default_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestContextMiddleware)
app.add_exception_handler(ReservationError, reservation_error_handler)

app.include_router(api_router)


@app.get("/health")
def health():
    return {"status": "ok"}
