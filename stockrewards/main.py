import logging

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from mangum import Mangum
from starlette.middleware.cors import CORSMiddleware

from stockrewards import containers
from stockrewards.config import settings
from stockrewards.core.exception_handlers import (
    handle_base_api_exception,
    handle_http_exception,
    handle_unexpected_error,
    handle_validation_error,
)
from stockrewards.core.exceptions import BaseAPIException
from stockrewards.core.logging_middleware import LoggingMiddleware
from stockrewards.logging_config import setup_logging
from stockrewards.routers import (
    corporate_action_router,
    health_router,
    reward_router,
    stock_router,
    user_router,
)

load_dotenv("stockrewards/.env")
setup_logging(settings.LOG_LEVEL, json_logs=settings.LOG_JSON)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """FastAPI 애플리케이션 생성 (컨테이너, 미들웨어, 예외 핸들러, 라우터 등록)"""
    app = FastAPI(
        title=settings.APP_NAME,
        description="Stock reward ledger: idempotent reward intake, double-entry posting, "
        "price oracle and corporate action processing",
        version="1.0.0",
    )
    app.container = containers.Container()  # type: ignore

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)

    app.add_exception_handler(BaseAPIException, handle_base_api_exception)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    @app.get("/")
    def root() -> dict:
        return {"message": f"{settings.APP_NAME} is running"}

    app.include_router(health_router.router)
    app.include_router(reward_router.router, prefix=settings.API_V1_STR)
    app.include_router(stock_router.router, prefix=settings.API_V1_STR)
    app.include_router(user_router.router, prefix=settings.API_V1_STR)
    app.include_router(corporate_action_router.router, prefix=settings.API_V1_STR)

    logger.info(f"{settings.APP_NAME} initialized ({settings.ENVIRONMENT})")
    return app


app = create_app()

handler = Mangum(app)
