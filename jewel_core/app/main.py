import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import configure_logging, get_cors_origins, get_shop_profile
from .db import create_db_and_tables
from .auth import router as auth_router
from .excel import router as excel_router
from .routers.bills import router as bills_router
from .routers.rates import router as rates_router
from .routers.reports import router as reports_router
from .routers.stock import router as stock_router

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title="Jewellery Shop Billing and Stock",
        description="Billing, rate table and stock ledger for a retail jewellery shop",
        version="1.0.0"
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)
    app.include_router(bills_router)
    app.include_router(stock_router)
    app.include_router(rates_router)
    app.include_router(reports_router)
    app.include_router(excel_router)

    @app.get("/health")
    def health():
        return {"status": "ok", "shop": get_shop_profile()["name"]}

    @app.on_event("startup")
    def on_startup():
        logger.info("Creating database tables at startup...")
        create_db_and_tables()
        logger.info("Database ready.")

    return app


app = create_app()
