"""FastAPI dependency injection — shared services live on ``app.state``."""
import logging
from typing import Optional

from fastapi import Depends, Request

from app.services.chat_service import ChatService
from app.services.extraction_service import DrawingAnalyzer
from app.services.import_pipeline import ImportSession
from app.services.ledger import ProjectLedger
from app.services.market_api import MarketPriceService
from app.services.project_store import ProjectStore, StorageQuotaExceeded

logger = logging.getLogger("vesselcost-api.deps")


def get_ledger(request: Request) -> ProjectLedger:
    return request.app.state.ledger


def get_import_session(request: Request) -> ImportSession:
    return request.app.state.import_session


def get_analyzer(request: Request) -> DrawingAnalyzer:
    return request.app.state.analyzer


def get_store(request: Request) -> ProjectStore:
    return request.app.state.store


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def get_market_service(analyzer: DrawingAnalyzer = Depends(get_analyzer)) -> MarketPriceService:
    return MarketPriceService(analyzer)


async def autosave(store: ProjectStore, ledger: ProjectLedger) -> Optional[str]:
    """
    Save after an edit. Returns the user-facing message when the quota refused
    the save; the in-memory ledger stays as it is either way.
    """
    try:
        await store.save(ledger)
    except StorageQuotaExceeded as e:
        logger.warning(f"Auto-save skipped for {ledger.id}: {e.size} bytes over quota")
        return str(e)
    return None
