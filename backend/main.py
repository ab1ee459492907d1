import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from config import settings
from services.auth import AnonymousAuthProvider
from services.session_facade import SessionFacade
from services.session_store import build_session_store

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Murder at the Cabin backend starting up (store={settings.store_backend})...")
    app.state.facade = SessionFacade(
        store=build_session_store(settings),
        auth=AnonymousAuthProvider(),
        config=settings,
    )
    yield
    await app.state.facade.shutdown()
    logger.info("Backend shutting down.")


app = FastAPI(
    title="Murder at the Cabin",
    version="0.1.0",
    description="Phone-based party murder mystery: round and phase engine",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins + ([settings.extra_origin] if settings.extra_origin else []),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "murder-at-the-cabin", "version": "0.1.0"}


from routers.session_router import router as session_router
from routers.ws_router import router as ws_router

app.include_router(session_router, prefix="/api")
app.include_router(ws_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
