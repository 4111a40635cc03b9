import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import Base, engine
from app.services.election_errors import (
    DuplicateBallotError, ElectionError, IneligibleUnitError, InvalidDefinitionError,
    InvalidVotePayloadError, MissingProxyAuthorizationError, NotFoundError, PreconditionError,
)

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Most specific class first; ElectionNotOpenError falls under PreconditionError
_ERROR_STATUS = [
    (NotFoundError, 404),
    (PreconditionError, 409),
    (DuplicateBallotError, 409),
    (IneligibleUnitError, 422),
    (InvalidVotePayloadError, 422),
    (MissingProxyAuthorizationError, 422),
    (InvalidDefinitionError, 422),
]


def status_for_error(exc: ElectionError) -> int:
    for error_class, status_code in _ERROR_STATUS:
        if isinstance(exc, error_class):
            return status_code
    return 400


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Import models so they register with Base
    import app.models  # noqa: F401

    # Ensure data directories exist
    for d in [settings.data_dir, settings.upload_dir, settings.generated_dir]:
        d.mkdir(parents=True, exist_ok=True)
    (settings.upload_dir / "excel").mkdir(exist_ok=True)
    (settings.generated_dir / "exports").mkdir(exist_ok=True)

    Base.metadata.create_all(bind=engine)
    logger.info("%s started", settings.app_name)

    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)


@app.exception_handler(ElectionError)
async def election_error_handler(request: Request, exc: ElectionError):
    body = {"error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, InvalidVotePayloadError) and exc.item_id is not None:
        body["item_id"] = exc.item_id
    return JSONResponse(status_code=status_for_error(exc), content=body)


# Register routers
from app.routers import administration, elections, units  # noqa: E402

app.include_router(elections.router, prefix="/elections", tags=["Elections"])
app.include_router(units.router, prefix="/units", tags=["Units"])
app.include_router(administration.router, prefix="/building", tags=["Building"])
