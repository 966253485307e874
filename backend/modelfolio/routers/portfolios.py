# backend/modelfolio/routers/portfolios.py
"""
Portfolio endpoints.

- GET  /portfolios/{id}/valuation          - Recompute and return the valuation
- POST /portfolios/{id}/transactions/buy   - Buy shares
- POST /portfolios/{id}/transactions/sell  - Sell shares
- GET  /portfolios/{id}/history            - Daily value series for a period

Service exceptions are not caught here; the global handlers in main.py turn
them into HTTP responses.
"""

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from modelfolio.database import get_db
from modelfolio.dependencies import (
    get_price_log_service,
    get_transaction_service,
    get_valuation_engine,
)
from modelfolio.middleware.rate_limit import RATE_LIMIT_WRITE, limiter
from modelfolio.schemas.transactions import BuyRequest, SellRequest, TransactionResponse
from modelfolio.schemas.valuation import (
    HistoryPointResponse,
    HoldingValuationResponse,
    MinimumInvestmentResponse,
    PortfolioHistoryResponse,
    PortfolioValuationResponse,
)
from modelfolio.services.transactions import TransactionOutcome, TransactionService
from modelfolio.services.valuation import (
    HoldingValuationResult,
    PortfolioHistory,
    PortfolioValuation,
    PortfolioValuationEngine,
    PriceLogService,
)

# =============================================================================
# ROUTER SETUP
# =============================================================================

router = APIRouter(
    prefix="/portfolios",
    tags=["Portfolios"],
)


# =============================================================================
# MAPPER FUNCTIONS (Internal Types -> Pydantic Schemas)
# =============================================================================

def _map_holding(result: HoldingValuationResult) -> HoldingValuationResponse:
    return HoldingValuationResponse(
        holding_id=result.holding_id,
        symbol=result.symbol,
        exchange=result.exchange,
        sector=result.sector,
        status=result.status,
        quantity=result.quantity,
        buy_price=result.buy_price,
        price=result.price,
        price_source=result.price_source.value if result.price_source else None,
        minimum_investment_value_stock=result.minimum_investment_value_stock,
        investment_value_at_buy=result.investment_value_at_buy,
        investment_value_at_market=result.investment_value_at_market,
        unrealized_pnl=result.unrealized_pnl,
        unrealized_pnl_percent=result.unrealized_pnl_percent,
        realized_pnl=result.realized_pnl,
        data_quality_issues=list(result.data_quality_issues),
    )


def _map_valuation(valuation: PortfolioValuation) -> PortfolioValuationResponse:
    check = valuation.min_investment
    return PortfolioValuationResponse(
        portfolio_id=valuation.portfolio_id,
        portfolio_name=valuation.portfolio_name,
        as_of=valuation.as_of,
        use_closing_price=valuation.use_closing_price,
        cash_balance=valuation.cash_balance,
        holdings_value_at_buy=valuation.holdings_value_at_buy,
        holdings_value_at_market=valuation.holdings_value_at_market,
        total_portfolio_value=valuation.total_portfolio_value,
        total_unrealized_pnl=valuation.total_unrealized_pnl,
        total_unrealized_pnl_percent=valuation.total_unrealized_pnl_percent,
        total_realized_pnl=valuation.total_realized_pnl,
        min_investment=MinimumInvestmentResponse(
            configured_min_investment=check.configured_min_investment,
            allocated_capital=check.allocated_capital,
            effective_min_investment=check.effective_min_investment,
            threshold=check.threshold,
            current_total=check.current_total,
            is_below_threshold=check.is_below_threshold,
            shortfall=check.shortfall,
        ),
        holdings=[_map_holding(h) for h in valuation.holdings],
        warnings=valuation.warnings,
        has_complete_data=valuation.has_complete_data,
        run_id=valuation.run_id,
    )


def _map_outcome(outcome: TransactionOutcome) -> TransactionResponse:
    return TransactionResponse(
        transaction_type=outcome.transaction_type,
        symbol=outcome.symbol,
        exchange=outcome.exchange,
        quantity=outcome.quantity,
        price=outcome.price,
        amount=outcome.amount,
        cash_before=outcome.cash_before,
        cash_after=outcome.cash_after,
        realized_pnl=outcome.realized_pnl,
        realized_pnl_percent=outcome.realized_pnl_percent,
        holding_state_before=outcome.state_before,
        holding_state_after=outcome.state_after,
        remaining_quantity=outcome.remaining_quantity,
        buy_price=outcome.buy_price,
        minimum_investment_value_stock=outcome.minimum_investment_value_stock,
    )


def _map_history(history: PortfolioHistory) -> PortfolioHistoryResponse:
    return PortfolioHistoryResponse(
        portfolio_id=history.portfolio_id,
        portfolio_name=history.portfolio_name,
        period=history.period,
        total_gain=history.total_gain,
        total_gain_percent=history.total_gain_percent,
        points=[
            HistoryPointResponse(
                date=p.log_date,
                portfolio_value=p.portfolio_value,
                cash_remaining=p.cash_remaining,
                gain=p.gain,
                gain_percent=p.gain_percent,
            )
            for p in history.points
        ],
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/{portfolio_id}/valuation", response_model=PortfolioValuationResponse)
def get_portfolio_valuation(
        portfolio_id: int,
        use_closing_price: bool = Query(False, description="Prefer today's closing prices when fresh"),
        persist: bool = Query(True, description="Store the derived holding values"),
        db: Session = Depends(get_db),
        engine: PortfolioValuationEngine = Depends(get_valuation_engine),
) -> PortfolioValuationResponse:
    """
    Recompute the valuation of a portfolio.

    Holdings without any usable price are valued at their last known price
    (or buy price) and listed in ``warnings``.
    """
    valuation = engine.value_portfolio(
        db, portfolio_id, use_closing_price=use_closing_price, persist=persist
    )
    return _map_valuation(valuation)


@router.post(
    "/{portfolio_id}/transactions/buy",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(RATE_LIMIT_WRITE)
def buy(
        request: Request,
        portfolio_id: int,
        payload: BuyRequest,
        db: Session = Depends(get_db),
        service: TransactionService = Depends(get_transaction_service),
) -> TransactionResponse:
    """Buy shares; cash decreases by price × quantity."""
    outcome = service.buy(
        db,
        portfolio_id,
        symbol=payload.symbol,
        quantity=payload.quantity,
        price=payload.price,
        exchange=payload.exchange,
        sector=payload.sector,
    )
    return _map_outcome(outcome)


@router.post(
    "/{portfolio_id}/transactions/sell",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(RATE_LIMIT_WRITE)
def sell(
        request: Request,
        portfolio_id: int,
        payload: SellRequest,
        db: Session = Depends(get_db),
        service: TransactionService = Depends(get_transaction_service),
) -> TransactionResponse:
    """Sell shares; cash increases by exactly the sale proceeds."""
    outcome = service.sell(
        db,
        portfolio_id,
        symbol=payload.symbol,
        quantity=payload.quantity,
        price=payload.price,
        exchange=payload.exchange,
    )
    return _map_outcome(outcome)


@router.get("/{portfolio_id}/history", response_model=PortfolioHistoryResponse)
def get_portfolio_history(
        portfolio_id: int,
        period: str = Query("1m", description="1d, 1w, 1m, 3m, 6m, 1y or all"),
        db: Session = Depends(get_db),
        service: PriceLogService = Depends(get_price_log_service),
) -> PortfolioHistoryResponse:
    return _map_history(service.get_history(db, portfolio_id, period=period))
