from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from database import Base, SessionLocal, engine, settings
from api import board, game, players, questions, sessions, state
from core.session_registry import SessionRegistry
from services.question_bank import DEFAULT_QUESTIONS

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: 在應用啟動時建立資料庫表，並準備預設場次
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        SessionRegistry.ensure_session(
            db,
            settings.default_session_id,
            default_questions=DEFAULT_QUESTIONS if settings.seed_default_questions else None
        )
    finally:
        db.close()
    yield
    # Shutdown: 關閉連線池
    engine.dispose()


app = FastAPI(
    title="Quiz Buzzer API",
    description="Backend API for a multiplayer buzzer quiz with a moderator-driven question flow",
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

# Include routers
app.include_router(sessions.router)
app.include_router(players.router)
app.include_router(game.router)
app.include_router(state.router)
app.include_router(questions.router)
app.include_router(board.router)


@app.get("/")
def root():
    return {"message": "Quiz Buzzer API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
