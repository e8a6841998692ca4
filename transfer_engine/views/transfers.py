import asyncio
import time
from collections import Counter
from decimal import Decimal

from fastapi import APIRouter, HTTPException, Query, Request

from ..coordinator import TransferCoordinator
from ..errors import StoreError
from ..models import TransferRequest, TransferResponse
from ..retry import transfer_with_retry


def _coordinator(request: Request, name: str) -> TransferCoordinator:
    return request.app.state.coordinators[name]


async def _initialize(request: Request):
    settings = request.app.state.settings
    try:
        return await request.app.state.store.reset(settings.seed_accounts)
    except StoreError as e:
        raise HTTPException(status_code=409, detail=str(e))


def build_router(strategy_name: str, tag: str) -> APIRouter:
    """Transfer, setup and reporting endpoints for one strategy"""
    router = APIRouter(
        prefix=f"/{strategy_name}",
        tags=[tag],
        responses={404: {"description": "Not found"}}
    )

    @router.post("/transfer", response_model=TransferResponse)
    async def transfer(body: TransferRequest, request: Request):
        return await _coordinator(request, strategy_name).transfer(body)

    @router.post("/initialize")
    async def initialize_accounts(request: Request):
        """Reseed the accounts (Alice: 500.00, Bob: 500.00)"""
        accounts = await _initialize(request)
        return {"message": "accounts initialized", "accounts": accounts}

    @router.get("/balances")
    async def get_balances(request: Request):
        accounts = await request.app.state.store.list_accounts()
        return {"balances": {a.id: {"name": a.name, "balance": str(a.balance), "version": a.version} for a in accounts}}

    @router.post("/stress-test")
    async def stress_test(
        request: Request,
        requests: int = Query(10, ge=1, le=1000),
        amount: Decimal = Query(Decimal("10.00"), gt=0, max_digits=19, decimal_places=4),
        retries: int = Query(0, ge=0, le=20),
    ):
        """Fire concurrent Alice -> Bob transfers from a fresh seed.

        ``retries`` > 0 wraps every call in caller-side retry with backoff;
        with 0 each conflict is reported as-is.
        """
        coordinator = _coordinator(request, strategy_name)
        seeded = await _initialize(request)
        body = TransferRequest(from_id=1, to_id=2, amount=amount)

        start_time = time.time()
        if retries:
            tasks = [transfer_with_retry(coordinator, body, max_retries=retries) for _ in range(requests)]
        else:
            tasks = [coordinator.transfer(body) for _ in range(requests)]
        results = await asyncio.gather(*tasks)
        total_time = time.time() - start_time

        final_accounts = await request.app.state.store.list_accounts()
        counts = Counter(r.result.value for r in results)
        return {
            "message": f"{strategy_name} stress test finished",
            "total_requests": len(results),
            "success_count": counts.get("success", 0),
            "failed_count": len(results) - counts.get("success", 0),
            "results_by_kind": dict(counts),
            "total_execution_time": total_time,
            "initial_total": str(sum(a.balance for a in seeded)),
            "final_total": str(sum(a.balance for a in final_accounts)),
            "final_balances": {a.id: str(a.balance) for a in final_accounts},
        }

    @router.post("/scenario")
    async def scenario(request: Request):
        """100.00 1->2, then 1000.00 1->2 (rejected), then 50.00 2->1, from a fresh seed"""
        coordinator = _coordinator(request, strategy_name)
        store = request.app.state.store
        steps = []
        initial = await _initialize(request)
        for from_id, to_id, amount in ((1, 2, "100.00"), (1, 2, "1000.00"), (2, 1, "50.00")):
            response = await coordinator.transfer_between(from_id, to_id, Decimal(amount))
            steps.append({
                "transfer": f"{from_id} -> {to_id}: {amount}",
                "result": response.result,
                "balances": {a.id: str(a.balance) for a in await store.list_accounts()},
            })
        return {"initial": {a.id: str(a.balance) for a in initial}, "steps": steps}

    @router.get("/info")
    async def strategy_info(request: Request):
        return _coordinator(request, strategy_name).strategy.info()

    return router
