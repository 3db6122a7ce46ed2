from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

import models  # noqa: F401  registers the tables on Base.metadata
from database import Base, engine, settings
from api import sessions, participants, rounds, scheduler
from core.exceptions import DropOneException

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create tables
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(
    title="Drop-One API",
    description="Backend API for the rock-paper-scissors drop-one elimination game",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure this properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DropOneException)
async def handle_game_error(request: Request, exc: DropOneException):
    # the client should re-fetch state before retrying
    logger.info(f"{request.method} {request.url.path} rejected: {exc.kind}: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "detail": str(exc)}
    )


# Include routers
app.include_router(sessions.router)
app.include_router(participants.router)
app.include_router(rounds.router)
app.include_router(scheduler.router)


@app.get("/")
def root():
    return {"message": "Drop-One API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
