from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from household_ledger.api.errors import register_exception_handlers
from household_ledger.api.routes import classify, config, connections, households, imports, receipts, transactions
from household_ledger.core import settings
from household_ledger.db.session import create_ledger_engine, create_session_factory, init_db
from household_ledger.domain.provider_categories import ProviderCategoryMap, load_provider_category_map
from household_ledger.integration.plaid import PlaidClient
from household_ledger.integration.vision import ReceiptExtractor
from household_ledger.ledger.repository import Ledger
from household_ledger.logger import get_logger, setup_logging
from household_ledger.manager import CategorizerService
from household_ledger.services.classification import ClassificationPipeline
from household_ledger.services.connections import ConnectionService
from household_ledger.services.households import HouseholdService
from household_ledger.services.imports import ImportService
from household_ledger.services.receipts import ReceiptProcessor
from household_ledger.services.sync import SyncController

logger = get_logger(__name__)


def wire_services(
    app: FastAPI,
    ledger: Ledger,
    *,
    plaid: PlaidClient,
    categorizer: CategorizerService,
    extractor: ReceiptExtractor,
    category_map: ProviderCategoryMap,
    storage_dir: str,
) -> None:
    """Build the service graph on ``app.state``."""
    classification = ClassificationPipeline(ledger, categorizer)
    app.state.ledger = ledger
    app.state.category_map = category_map
    app.state.plaid = plaid
    app.state.categorizer = categorizer
    app.state.classification = classification
    app.state.households = HouseholdService(ledger, category_map)
    app.state.sync = SyncController(ledger, plaid, category_map)
    app.state.imports = ImportService(ledger, classification)
    app.state.receipts = ReceiptProcessor(ledger, extractor, storage_dir)
    app.state.connections = ConnectionService(ledger, plaid)


def create_app() -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        engine = create_ledger_engine(settings.get_database_url())
        init_db(engine)
        plaid = PlaidClient()
        if not plaid.configured:
            logger.warning("PLAID_CLIENT_ID or PLAID_SECRET not set. Bank sync will be disabled.")
        categorizer = CategorizerService(data_dir=settings.DATA_DIR)
        if not categorizer.llm_enabled:
            logger.info("OPENAI_API_KEY not set. Classification and receipt scanning will be disabled.")

        wire_services(
            app,
            Ledger(create_session_factory(engine)),
            plaid=plaid,
            categorizer=categorizer,
            extractor=ReceiptExtractor(),
            category_map=load_provider_category_map(),
            storage_dir=settings.DATA_DIR,
        )

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")
        await plaid.aclose()
        engine.dispose()

    app = FastAPI(title="Household Ledger", lifespan=lifespan)
    register_exception_handlers(app)

    app.include_router(households.router)
    app.include_router(transactions.router)
    app.include_router(imports.router)
    app.include_router(connections.router)
    app.include_router(classify.router)
    app.include_router(receipts.router)
    app.include_router(config.router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
