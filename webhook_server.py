"""
FastAPI server for the tuning file fulfillment service
Hosts the file API and the Yalidine carrier webhook

Run with:
    uvicorn webhook_server:create_app --factory
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from config import Config
from database import SessionLocal, create_tables
from handlers.file_status import router as file_status_router
from handlers.yalidine_webhook import router as yalidine_router
from services.service_context import ServiceContext
from utils.exceptions import FulfillmentError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    context: ServiceContext = app.state.context
    await context.webhook_queue.start()
    logger.info("✅ SERVER_STARTED")
    try:
        yield
    finally:
        await context.webhook_queue.stop()
        logger.info("🛑 SERVER_STOPPED")


def create_app(context: Optional[ServiceContext] = None) -> FastAPI:
    if context is None:
        create_tables()
        context = ServiceContext.from_config(SessionLocal)

    app = FastAPI(title="Tuning File Fulfillment", lifespan=lifespan)
    app.state.context = context
    app.include_router(file_status_router)
    app.include_router(yalidine_router)

    @app.exception_handler(FulfillmentError)
    async def fulfillment_error_handler(request: Request, exc: FulfillmentError):
        if exc.status_code >= 500:
            logger.error(f"❌ REQUEST_FAILED: {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "ValidationError", "message": "Invalid request body", "details": jsonable_encoder(exc.errors())},
        )

    @app.get("/health")
    async def health():
        return {"status": "ok", "webhook_queue_pending": context.webhook_queue.pending}

    return app


def run() -> None:
    logging.basicConfig(
        level=Config.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(create_app(), host=Config.HOST, port=Config.PORT)


if __name__ == "__main__":
    run()
