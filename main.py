from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from database import Base, engine, SessionLocal, settings
from api import admin, auction, participants, websocket
from core.auction_clock import AuctionClock
from core.auction_engine import get_auction_state
from core.broadcaster import broadcaster
from core.locks import writer_lock
from core.state_machine import get_lobby
from core import sync

logger = logging.getLogger(__name__)


def bootstrap_singletons() -> None:
    """建立 LobbySettings / AuctionState 單例（已存在則不動）"""
    db = SessionLocal()
    try:
        with writer_lock:
            get_lobby(db)
            get_auction_state(db)
            db.commit()
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: 建立資料表、單例，啟動廣播與拍賣時鐘
    Base.metadata.create_all(bind=engine)
    bootstrap_singletons()

    await broadcaster.start()
    sync.set_publisher(broadcaster.publish)

    clock = AuctionClock(settings.tick_interval_seconds)
    if settings.clock_enabled:
        clock.start()
    else:
        logger.warning("Auction clock disabled, items resolve only on admin action")

    yield

    # Shutdown
    await clock.stop()
    sync.set_publisher(None)
    await broadcaster.stop()


app = FastAPI(
    title="Live Auction API",
    description="Authoritative backend for team formation and live auctions",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    # 客戶端直接把 message 顯示成通知
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", []) if p != "body")
    return JSONResponse(
        status_code=422,
        content={"message": f"Invalid {field}: {first.get('msg', 'bad request')}"}
    )


# Include routers
app.include_router(participants.router)
app.include_router(auction.router)
app.include_router(admin.router)
app.include_router(websocket.router)


@app.get("/")
def root():
    return {"message": "Live Auction API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
