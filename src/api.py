"""
Profile Harvester API

FastAPI application exposing the harvest pipeline:
- GET  /scrape  Server-Sent Events stream of progress events, then the result
- POST /scrape  synchronous call returning the result as JSON

Run with: uvicorn src.api:app --port 3000
"""

import asyncio
import json
import logging
import os
from typing import Any, AsyncIterator, Dict, List, Optional, Set

import dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from src.harvest import (
    HarvestConfig,
    HarvestError,
    HarvestMode,
    HarvestOrchestrator,
    HarvestRequest,
    InputError,
    Phase,
    ProgressEmitter,
    SSEEvent,
)
from src.harvest.config import get_allowed_origins
from src.harvest.events import EventSink

dotenv.load_dotenv()

# Configure logging
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Profile Harvester API",
    description="Harvests structured profile records from authenticated listing pages",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_allowed_origins(),
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Harvests keep running if the SSE client disconnects; hold references until done.
_running_harvests: Set[asyncio.Task] = set()


def create_orchestrator(sink: Optional[EventSink] = None) -> HarvestOrchestrator:
    """Build an orchestrator for one request, wired to the given event sink."""
    config = HarvestConfig.from_env()
    return HarvestOrchestrator(config, ProgressEmitter(sink))


# ============================================================================
# Error Handlers
# ============================================================================

@app.exception_handler(InputError)
async def input_error_handler(request: Request, exc: InputError):
    """Handle missing or malformed input."""
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(HarvestError)
async def harvest_error_handler(request: Request, exc: HarvestError):
    """Handle pipeline failures."""
    logger.error(f"Harvest failed: {exc}")
    return JSONResponse(status_code=500, content={"error": str(exc)})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error", "detail": str(exc)})


# ============================================================================
# Endpoints
# ============================================================================

@app.get("/", response_class=PlainTextResponse)
async def root():
    return "Hello, World!"


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "Profile Harvester API",
        "version": "0.1.0"
    }


def _on_harvest_done(task: asyncio.Task) -> None:
    _running_harvests.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.info(f"Harvest ended with error: {task.exception()}")


def _parse_json_param(name: str, raw: Optional[str]) -> List[Any]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InputError(f"Query parameter '{name}' is not valid JSON: {e}") from e
    if not isinstance(value, list):
        raise InputError(f"Query parameter '{name}' must be a JSON array")
    return value


async def _event_stream(
    url: Optional[str],
    fields: Optional[str],
    cookies: Optional[str],
    mode: str,
) -> AsyncIterator[str]:
    """Run one harvest and yield its progress events as SSE messages."""
    try:
        if not url:
            raise InputError("URL is required")
        parsed_fields = _parse_json_param("fields", fields)
        parsed_cookies = _parse_json_param("cookies", cookies)
        harvest_mode = HarvestMode(mode)
        queue: asyncio.Queue = asyncio.Queue()
        # Config is read from the environment here; bad values surface as ValueError.
        orchestrator = create_orchestrator(queue.put_nowait)
    except (InputError, ValueError) as e:
        yield SSEEvent(Phase.ERROR.value, {"message": str(e)}).format()
        return

    task = asyncio.create_task(
        orchestrator.harvest(url, parsed_cookies, fields=parsed_fields, mode=harvest_mode)
    )
    _running_harvests.add(task)
    task.add_done_callback(_on_harvest_done)
    # The sentinel lands after every event the harvest emitted.
    task.add_done_callback(lambda _: queue.put_nowait(None))

    while True:
        event = await queue.get()
        if event is None:
            break
        yield SSEEvent.from_progress(event).format()

    if task.cancelled():
        yield SSEEvent(Phase.ERROR.value, {"message": "Scraping cancelled"}).format()
        return

    error = task.exception()
    if error is not None:
        if not isinstance(error, HarvestError):
            logger.error(f"Scrape error: {error}", exc_info=error)
        return

    result = task.result()
    yield SSEEvent(Phase.FINISHING.value, "wrapup!").format()
    yield SSEEvent("result", result.to_payload()).format()


@app.get("/scrape")
async def scrape_stream(
    url: Optional[str] = None,
    fields: Optional[str] = None,
    cookies: Optional[str] = None,
    mode: str = HarvestMode.EXTRACT.value,
):
    """
    Stream a harvest as Server-Sent Events.

    - **url**: Listing page URL
    - **fields**: JSON array of requested fields (accepted, unused)
    - **cookies**: JSON array of auth cookies
    - **mode**: ``extract`` or ``enrich``
    """
    return StreamingResponse(
        _event_stream(url, fields, cookies, mode),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"
        }
    )


@app.post("/scrape")
async def scrape_sync(request: HarvestRequest) -> Dict[str, Any]:
    """
    Run a harvest and return the result.

    Returns 400 when ``url`` is missing and 500 on any pipeline failure.
    """
    if not request.url:
        raise InputError("URL is required")
    orchestrator = create_orchestrator()
    result = await orchestrator.harvest(
        request.url,
        request.cookies,
        fields=request.fields,
        mode=request.mode,
    )
    return result.to_payload()


def main():
    import uvicorn

    logging.basicConfig(level=logging.INFO, format='%(asctime)s | %(levelname)s | %(message)s')
    port = int(os.getenv("PORT", "3000"))
    logger.info(f"Server running on port {port}")
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
