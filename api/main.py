"""
FastAPI Application - Talmud Translation API
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .dependencies import get_dispatcher
from .navigation import router as navigation_router
from .texts import router as texts_router
from .translate import router as translate_router

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Talmud Translation",
    description="Cached, streamed translations of Sefaria texts and their commentaries",
    version="1.0.0",
)

# CORS middleware
origins = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(translate_router, prefix="/api", tags=["translation"])
app.include_router(texts_router, prefix="/api", tags=["texts"])
app.include_router(navigation_router, prefix="/api", tags=["navigation"])


@app.get("/")
async def root():
    """Home page"""
    return {
        "message": "Talmud Translation API",
        "version": "1.0.0",
        "endpoints": {
            "translate": "/api/translate",
            "translate_stream": "/api/translate-stream",
            "translations": "/api/translations",
            "sefaria": "/api/sefaria",
            "commentary": "/api/commentary",
            "sessions": "/api/sessions/{session_id}",
            "health": "/api/health",
        },
    }


@app.get("/api/health")
def health(dispatcher=Depends(get_dispatcher)):
    """System health check"""
    try:
        return {
            "status": "healthy",
            "store": {"connected": dispatcher.store.ping(), "translations": dispatcher.store.count()},
            "translator_model": dispatcher.translator.model,
        }
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
