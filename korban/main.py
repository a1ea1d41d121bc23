"""
Korban Tracker API
korban/main.py

    uvicorn korban.main:app
"""

import logging

from fastapi import FastAPI

from korban.config import get_config
from korban.database import Base, engine
from korban import models  # noqa: F401  (registers tables on Base)
from korban.routers import integrity, ledger, participants

config = get_config()

logging.basicConfig(
    level=getattr(logging, config.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(title="Korban Tracker")

app.include_router(participants.router)
app.include_router(ledger.router)
app.include_router(integrity.router)


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "schedule": list(config.schedule.months),
        "currency": config.currency,
    }


logger.info(
    f"Korban Tracker ready: {len(config.schedule)} installments "
    f"{config.schedule.months[0]} → {config.schedule.months[-1]}"
)
