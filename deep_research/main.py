from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from deep_research.api.routes import models, research
from deep_research.config import settings
from deep_research.services.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Deep research service starting")
    yield
    logger.info("Deep research service stopped")


app = FastAPI(
    title="Deep Research Orchestrator",
    description="Iterative search, scrape and synthesis over SSE",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(research.router)
app.include_router(models.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "deep-research"}
