from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from storefront.config import get_settings
from storefront.database import Base, engine
from storefront.errors import StorefrontError
from storefront.log import configure_logging
from storefront.routes import CORS_HEADERS, router

configure_logging(get_settings())

app = FastAPI(title="Storefront Payment Service")

app.include_router(router)

Base.metadata.create_all(bind=engine)


@app.middleware("http")
async def add_cors_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in CORS_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    content = {"error": exc.message, "code": exc.code}
    if exc.details is not None:
        content["details"] = exc.details
    return JSONResponse(content, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        {"error": "Invalid request data", "details": jsonable_encoder(exc.errors())},
        status_code=400,
    )
