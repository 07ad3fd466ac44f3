import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from modules.analytics.router import router as analytics_router
from modules.auth.router import router as auth_router
from modules.incidents.router import router as incidents_router
from modules.incidents.utils import format_validation_error
from modules.notifications.router import router as notifications_router
from modules.shared.config import get_settings
from modules.shared.deps import init_services, shutdown_services
from modules.shared.errors import ServiceError
from modules.shared.response import error_response, success_response

logging.basicConfig(
    level=get_settings().LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("main")

app = FastAPI(title="Community Safety API")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router, prefix="/api/auth")
app.include_router(incidents_router, prefix="/api/incidents")
app.include_router(analytics_router, prefix="/api/analytics")
app.include_router(notifications_router, prefix="/api/notifications")


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return error_response(exc.message, exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    response = error_response(str(exc.detail), exc.status_code)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return error_response(format_validation_error(exc), 400)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response("Internal server error", 500)


@app.get("/api/health")
async def health():
    return success_response({"backend": get_settings().STORE_BACKEND}, "OK")


@app.on_event("startup")
async def startup_event():
    """Connect the store backend and build services on startup"""
    await init_services(get_settings())


@app.on_event("shutdown")
async def shutdown_event():
    await shutdown_services()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
