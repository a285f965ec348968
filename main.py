import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
import db
import storage
from routers import auth, contact, donations, free_food, ngos, requests, volunteers

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("wall_of_humanity")


@asynccontextmanager
async def lifespan(app: FastAPI):
    db.init_db()
    storage.ensure_upload_dirs()
    logger.info("Started in %s mode", config.ENVIRONMENT)
    yield
    db.close_db()


app = FastAPI(title="Wall of Humanity API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)

storage.ensure_upload_dirs()
app.mount("/uploads", StaticFiles(directory=storage.UPLOAD_ROOT), name="uploads")


if not config.IS_PRODUCTION:

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        logger.debug(
            "%s %s -> %s (%.1f ms)",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict):
        body = dict(exc.detail)
    else:
        body = {"message": exc.detail}
    return JSONResponse(body, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
    msg = str(first.get("msg", "Invalid request")).removeprefix("Value error, ")
    body = {"message": f"{field}: {msg}" if field else msg}
    if not config.IS_PRODUCTION:
        body["errors"] = [
            {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
            for e in errors
        ]
    return JSONResponse(body, status_code=400)


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse({"message": "Duplicate record", "code": "CONFLICT"}, status_code=400)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    if config.IS_PRODUCTION:
        body = {"message": "An unexpected error occurred"}
    else:
        body = {"message": str(exc) or "An unexpected error occurred", "detail": type(exc).__name__}
    return JSONResponse(body, status_code=500)


@app.get("/")
def read_root():
    return {"name": "Wall of Humanity API", "status": "ok"}


app.include_router(auth.router, prefix="/api/auth")
app.include_router(donations.router, prefix="/api/donations")
app.include_router(requests.router, prefix="/api/requests")
app.include_router(volunteers.router, prefix="/api/volunteers")
app.include_router(ngos.router, prefix="/api/ngos")
app.include_router(free_food.router, prefix="/api/free-food")
app.include_router(contact.router, prefix="/api/contact")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=config.PORT, reload=not config.IS_PRODUCTION)
