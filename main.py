import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from dronedesk import auth, models, routes
from dronedesk.config import ENVIRONMENT, FRONTEND_URL
from dronedesk.database import engine
from dronedesk.errors import ApiError
from dronedesk.logger_service import LoggerService

logger = LoggerService("dronedesk.main")

if ENVIRONMENT != "dev":
    required_env_vars = ['JWT_SECRET']
    for var in required_env_vars:
        if not os.getenv(var):
            raise ValueError(f"Required environment variable {var} is not set")

app = FastAPI(
    title="DroneDesk API",
    description="Sites, jobs, drones, pilots and conflict-free schedules for drone service operations",
    version="1.0.0"
)


@app.get("/")
def read_root():
    return {"message": "DroneDesk API is running"}


@app.on_event("startup")   # only for local dev, not production
def on_startup():
    models.Base.metadata.create_all(bind=engine)


@app.exception_handler(ApiError)
def handle_api_error(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.payload())


@app.exception_handler(StarletteHTTPException)
def handle_http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
def handle_request_validation(request: Request, exc: RequestValidationError):
    details = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        message = error.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        details.append({"path": ".".join(location), "message": message})
    return JSONResponse(status_code=400, content={"error": "Validation failed", "details": details})


app.include_router(auth.router, prefix="/api")
app.include_router(routes.router, prefix="/api")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL, "http://localhost:3000", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)
