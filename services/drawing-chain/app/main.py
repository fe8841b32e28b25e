import logging
import os
from fastapi import FastAPI
from .chain.api import router as chain_router

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Drawing Chain Scoring")
app.include_router(chain_router)


@app.get("/health")
def health():
    return {"status": "ok"}
