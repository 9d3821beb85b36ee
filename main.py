import logging
import time

import uvicorn
from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware

from autofix.api.remediation import get_runner, get_tracker, router as remediation_router
from autofix.core.config import CORS_ORIGINS
from autofix.utils.logging_config import setup_logging

setup_logging(level=logging.INFO)
logger = logging.getLogger("main")

app = FastAPI(title="Incident Auto-Fix Service")


# ---------------------------------------------------------------------------
# Logging Middleware
# ---------------------------------------------------------------------------
class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        client_host = request.client.host if request.client else "unknown"
        logger.info(f"Incoming: {request.method} {request.url.path} from {client_host}")

        try:
            response = await call_next(request)
            process_time = (time.time() - start_time) * 1000
            logger.info(
                f"Outgoing: {request.method} {request.url.path} - "
                f"Status: {response.status_code} - "
                f"Time: {process_time:.2f}ms"
            )
            return response
        except Exception as e:
            logger.error(f"Request failed: {request.method} {request.url.path} - Error: {str(e)}")
            raise


app.add_middleware(LoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    tracker = get_tracker()
    tracker.sweep()
    runner = get_runner()
    router = getattr(runner.orchestrator.completion, "router", None)
    return {
        "status": "ok",
        "tracked_runs": len(tracker),
        "active_runs": tracker.active_count,
        "providers": router.provider_health_state if router is not None else {},
    }


app.include_router(remediation_router)

if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)
