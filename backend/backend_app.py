import logging
import os
from pathlib import Path

from fastapi import FastAPI, Request

from blockurls.config import load_config
from blockurls.middleware import BlockRegexUrlsMiddleware

APP_ROOT = Path(__file__).resolve().parent.parent
CONFIG_PATH = Path(os.getenv("BLOCKURLS_CONFIG", APP_ROOT / "rules" / "block_rules.json"))

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))


def create_app(config_path: Path = CONFIG_PATH) -> FastAPI:
    app = FastAPI(title="Demo Backend App")
    app.add_middleware(BlockRegexUrlsMiddleware, config=load_config(config_path), name="demo-block-urls")

    @app.get("/")
    def home():
        return {"status": "ok", "message": "Hello from backend"}

    @app.get("/search")
    def search(q: str = ""):
        return {"query": q, "result_count": 1}

    @app.post("/login")
    async def login(request: Request):
        body = await request.json()
        return {"received": body}

    return app


app = create_app()
