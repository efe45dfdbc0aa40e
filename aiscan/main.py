# aiscan/main.py
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from aiscan.ai.manager import AIBackendManager
from aiscan.api.routes import (
    capture as capture_route,
    flagged as flagged_route,
    health as health_route,
    recording as recording_route,
    upload as upload_route,
    ws as ws_route,
)
from aiscan.core.config import Config
from aiscan.core.exceptions import AIScanError
from aiscan.core.logging import log_manager
from aiscan.services.broadcaster import ProgressBroadcaster
from aiscan.services.result_store import ResultStore
from aiscan.services.transcriber import Transcriber

log_manager.enable_console()


@asynccontextmanager
async def lifespan(app_obj: FastAPI):
    Config.validate()
    app_obj.state.ai_manager = AIBackendManager()
    app_obj.state.transcriber = Transcriber()
    app_obj.state.broadcaster = ProgressBroadcaster()
    app_obj.state.result_store = ResultStore() if Config.DATABASE_URL else None
    logger.info(f"AI scan API ready ({Config.ENV}), backend: {app_obj.state.ai_manager.current_backend_name}")
    try:
        yield
    finally:
        await app_obj.state.broadcaster.close()
        if app_obj.state.result_store is not None:
            app_obj.state.result_store.close()
        logger.info("AI scan API stopped")


app = FastAPI(title="AI Scan API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"],
)


@app.exception_handler(AIScanError)
async def aiscan_error_handler(request: Request, exc: AIScanError):
    return JSONResponse({"success": False, "error": exc.message}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse({"success": False, "error": f"Invalid request: {detail}"}, status_code=400)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse({"success": False, "error": "Internal server error"}, status_code=500)


app.include_router(upload_route.router, prefix="/api", tags=["upload"])
app.include_router(recording_route.router, prefix="/api", tags=["recording"])
app.include_router(capture_route.router, prefix="/api", tags=["capture"])
app.include_router(health_route.router, prefix="/api", tags=["health"])
app.include_router(flagged_route.router, prefix="/api", tags=["flagged"])
app.include_router(ws_route.router)


def run():
    uvicorn.run("aiscan.main:app", host=Config.HOST, port=Config.PORT, log_level=Config.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
