from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.account_routes import router as account_router
from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.exceptions import DecryptionError, ExpenseFlowError, RateLimitError
from app.core.logging import get_logger, setup_logging
from app.core.validation import describe, field_errors

setup_logging()
logger = get_logger("expenseflow.api")

settings = get_settings()

app = FastAPI(title="ExpenseFlow API", version="0.1.0")

LOCALHOST_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]

CORS_ORIGINS = {
    "development": LOCALHOST_ORIGINS,
    "production": [
        "https://expense-flow.vercel.app",
        *LOCALHOST_ORIGINS,
    ],
}

origins = CORS_ORIGINS.get(settings.environment, CORS_ORIGINS["development"])

# Allow Vercel preview deployments in production
allow_origin_regex = (
    r"https://expense-flow-.*\.vercel\.app" if settings.environment == "production" else None
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After", "Content-Disposition"],
)


# =============================================================================
# Error handling
# =============================================================================


@app.exception_handler(DecryptionError)
async def decryption_error_handler(request: Request, exc: DecryptionError) -> JSONResponse:
    logger.error(f"Decryption failed on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


@app.exception_handler(RateLimitError)
async def rate_limit_error_handler(request: Request, exc: RateLimitError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message},
        headers={"Retry-After": str(exc.retry_after)},
    )


@app.exception_handler(ExpenseFlowError)
async def expenseflow_error_handler(request: Request, exc: ExpenseFlowError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}")
        return JSONResponse(status_code=exc.status_code, content={"error": "Internal Server Error"})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = field_errors(exc.errors())
    return JSONResponse(status_code=400, content={"error": describe(fields), "fields": fields})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


app.include_router(api_router)
app.include_router(account_router)
