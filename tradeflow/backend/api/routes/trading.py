from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from tradeflow.backend.core.system import TradingSystem
from tradeflow.backend.engine.models import ProcessedIntent, TradingOptions, TradingRequest, TradingResult

router = APIRouter()


# --- Pydantic Models ---
class TradeCommand(BaseModel):
    input: str = Field(min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)
    dry_run: bool = False
    skip_validation: bool = False
    timeout_ms: Optional[int] = Field(default=None, gt=0)
    request_id: Optional[str] = None

    def to_request(self) -> TradingRequest:
        options = TradingOptions(dry_run=self.dry_run, skip_validation=self.skip_validation, timeout_ms=self.timeout_ms)
        fields = {"input": self.input, "context": self.context, "options": options}
        if self.request_id:
            fields["id"] = self.request_id
        return TradingRequest(**fields)


class BatchTradeCommand(BaseModel):
    commands: List[TradeCommand] = Field(min_length=1, max_length=100)


class ParseCommand(BaseModel):
    text: str = Field(min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)


# --- Dependencies ---
def get_system(request: Request) -> TradingSystem:
    system = getattr(request.app.state, "system", None)
    if system is None:
        raise HTTPException(status_code=503, detail="Trading system is not started")
    return system


# --- Endpoints ---
@router.post("/trade", response_model=TradingResult)
async def trade(command: TradeCommand, system: TradingSystem = Depends(get_system)):
    """Parses, validates and (unless dry_run) executes one command."""
    return await system.orchestrator.process_trading_request(command.to_request())


@router.post("/trade/batch", response_model=List[TradingResult])
async def trade_batch(batch: BatchTradeCommand, system: TradingSystem = Depends(get_system)):
    requests = [command.to_request() for command in batch.commands]
    return await system.orchestrator.batch_process_trading_requests(requests)


@router.post("/parse", response_model=ProcessedIntent)
async def parse(command: ParseCommand, system: TradingSystem = Depends(get_system)):
    """Resolves a command into an intent without touching the broker."""
    return await system.registry.process(command.text, command.context)


@router.post("/classify")
async def classify(command: ParseCommand, system: TradingSystem = Depends(get_system)):
    normalized = system.normalizer.normalize(command.text)
    return {"normalized": normalized, **system.classifier.details(normalized)}


@router.get("/account")
async def account(system: TradingSystem = Depends(get_system)):
    return await system.broker.get_account()


@router.get("/stats")
async def stats(system: TradingSystem = Depends(get_system)):
    return system.stats()
