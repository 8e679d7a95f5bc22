import logging
from functools import lru_cache
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request

from config.settings import CommandSettings
from schemas.command_api import CommandRequest, CommandResponse, ConfirmRequest, ConfirmResponse
from services.commands.arg_enricher import ArgumentEnricher
from services.commands.command_orchestrator import CommandOrchestrator
from services.commands.ollama_client import LLMServiceError, OllamaChatClient
from services.commands.quote_resolver import QuoteGuardConfig, QuoteResolver
from services.commands.symbol_resolver import SymbolMatchConfig
from services.commands.tool_executor import PortfolioToolExecutor
from services.commands.tool_registry import CONFIRM_MUTATION_TOOLS, tool_schemas
from services.portfolio.store import PortfolioStore
from services.quotes.coingecko_quotes import CoinGeckoQuoteProvider
from services.quotes.finnhub_quotes import FinnhubQuoteProvider
from services.quotes.yahoo_history import YahooHistoryProvider

logger = logging.getLogger(__name__)

router = APIRouter()


# ---- Dependencies (built once per process from env) ----
@lru_cache(maxsize=1)
def get_settings() -> CommandSettings:
    return CommandSettings.from_env()


@lru_cache(maxsize=1)
def get_portfolio_store() -> PortfolioStore:
    return PortfolioStore(get_settings().db_path)


def get_tool_executor(store: PortfolioStore = Depends(get_portfolio_store)) -> PortfolioToolExecutor:
    return PortfolioToolExecutor(store)


@lru_cache(maxsize=1)
def get_argument_enricher() -> ArgumentEnricher:
    s = get_settings()
    quotes = QuoteResolver(
        equities=FinnhubQuoteProvider(s.finnhub_api_key, timeout=s.quote_timeout_s) if s.finnhub_api_key else None,
        history=YahooHistoryProvider(timeout_s=s.quote_timeout_s),
        crypto=CoinGeckoQuoteProvider(s.coingecko_base_url, timeout=s.quote_timeout_s),
        config=QuoteGuardConfig(
            timeout_s=s.quote_timeout_s,
            low_ratio=s.suspicious_low_ratio,
            high_ratio=s.suspicious_high_ratio,
            window_days=s.suspicious_window_days,
        ),
    )
    return ArgumentEnricher(
        quotes=quotes,
        symbol_config=SymbolMatchConfig(min_score=s.symbol_min_score, min_gap=s.symbol_min_gap),
    )


def get_command_orchestrator(
    store: PortfolioStore = Depends(get_portfolio_store),
    executor: PortfolioToolExecutor = Depends(get_tool_executor),
    enricher: ArgumentEnricher = Depends(get_argument_enricher),
) -> CommandOrchestrator:
    s = get_settings()
    return CommandOrchestrator(
        store=store,
        llm=OllamaChatClient.from_settings(s),
        executor=executor,
        enricher=enricher,
        max_rounds=s.max_rounds,
    )


# ---------- Routes ----------
@router.post("/command", response_model=CommandResponse, response_model_by_alias=True)
async def run_command(
    req: CommandRequest,
    request: Request,
    orchestrator: CommandOrchestrator = Depends(get_command_orchestrator),
):
    req_id = getattr(request.state, "request_id", "-")
    try:
        return await orchestrator.run(req, req_id=req_id)
    except LLMServiceError as exc:
        logger.warning("command.llm_error req_id=%s status=%s", req_id, exc.status_code)
        raise HTTPException(status_code=exc.status_code, detail=str(exc))
    except Exception:
        logger.exception("command.failed req_id=%s", req_id)
        raise HTTPException(status_code=500, detail="Failed to process command")


@router.post("/command/confirm", response_model=ConfirmResponse, response_model_by_alias=True)
async def confirm_command(
    req: ConfirmRequest,
    executor: PortfolioToolExecutor = Depends(get_tool_executor),
):
    if req.tool not in CONFIRM_MUTATION_TOOLS:
        raise HTTPException(status_code=400, detail=f"{req.tool} does not need confirmation")
    execution = await executor.execute(req.tool, req.arguments)
    if not execution.ok:
        raise HTTPException(status_code=422, detail=execution.result["error"])
    return ConfirmResponse(ok=True, result=execution.result)


@router.get("/command/tools")
def list_tools() -> List[Dict[str, Any]]:
    return tool_schemas()


@router.get("/portfolio")
def get_portfolio(store: PortfolioStore = Depends(get_portfolio_store)) -> Dict[str, Any]:
    return store.read().model_dump(by_alias=True)
