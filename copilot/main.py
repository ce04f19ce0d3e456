"""FastAPI application entry point."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from copilot.api import router as api_router
from copilot.core.background import drain_pending


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    # Let in-flight cache writes and auto-titles finish
    await drain_pending()


app = FastAPI(
    title="Sales Copilot",
    description="Multi-agent sales copilot: routing, research, specialists and synthesis",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


# Include v1 API router
app.include_router(api_router, prefix="/v1", tags=["v1"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("copilot.main:app", host="0.0.0.0", port=8000)
