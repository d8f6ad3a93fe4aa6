from contextlib import asynccontextmanager

from fastapi import FastAPI

from reseller_engine.core.logging import configure_logging
from reseller_engine.db.base import Base
from reseller_engine.db.session import engine
from reseller_engine.api.v1.endpoints import admin_engine
from reseller_engine.api.v1.endpoints import admin_wallet
# Ensure all models are imported so Base knows about them for create_all
from reseller_engine.db import models  # noqa


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    # In a production deployment the schema is managed by migrations
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="Reseller Usage Engine", version="0.1.0", lifespan=lifespan)

app.include_router(admin_engine.router, prefix="/api/v1/admin/engine", tags=["Admin Engine"])
app.include_router(admin_wallet.router, prefix="/api/v1/admin/wallet", tags=["Admin Wallet"])


@app.get("/")
async def root():
    return {"message": "Reseller Usage Engine Running"}
