from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from .config import configure_logging, get_settings
from .merger import FILTERS
from .models import to_dict
from .service import ChainscopeService


def _service(request: Request) -> ChainscopeService:
    return request.app.state.service


def _chain_or_404(service: ChainscopeService, chain_id: int):
    chain = service.merger.get_chain(chain_id)
    if chain is None:
        raise HTTPException(status_code=404, detail=f"chain {chain_id} not found")
    return chain


def create_app(service: Optional[ChainscopeService] = None) -> FastAPI:
    """
    Build the API app. Without an explicit service one is created on startup,
    the registry is built (fast pass) and the health pass runs in the
    background; it is closed again on shutdown.
    """
    settings = service.settings if service is not None else get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.service is None
        if owned:
            app.state.service = ChainscopeService.create(settings)
            await app.state.service.merger.build_registry()
            app.state.service.start_background_refresh()
        try:
            yield
        finally:
            if owned:
                await app.state.service.aclose()
                app.state.service = None

    app = FastAPI(title="chainscope", lifespan=lifespan)
    app.state.service = service

    # Enable CORS for frontend
    allow_origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/chains")
    async def get_chains(request: Request, q: str = "", filter: Optional[str] = None):
        service = _service(request)
        chains = service.merger.search(q)
        if filter:
            try:
                allowed = {c.chain_id for c in service.merger.filter(filter)}
            except ValueError:
                raise HTTPException(status_code=400, detail=f"filter must be one of: {', '.join(FILTERS)}")
            chains = [c for c in chains if c.chain_id in allowed]
        return [to_dict(c) for c in chains]

    @app.get("/api/chains/{chain_id}")
    async def get_chain(request: Request, chain_id: int):
        return to_dict(_chain_or_404(_service(request), chain_id))

    @app.get("/api/chains/{chain_id}/wallet-rpcs")
    async def get_wallet_rpcs(request: Request, chain_id: int):
        service = _service(request)
        urls = service.wallet_rpcs(_chain_or_404(service, chain_id))
        # an empty list is an answer, not an error
        return {
            "chain_id": chain_id,
            "rpc_urls": urls,
            "safe": bool(urls),
            "reason": None if urls else "no_safe_rpc",
            "health_stale": service.merger.health_stale(),
        }

    @app.get("/api/chains/{chain_id}/rpcs")
    async def get_rpcs(request: Request, chain_id: int):
        service = _service(request)
        chain = _chain_or_404(service, chain_id)
        return {
            "chain_id": chain_id,
            "info": to_dict(service.rpc_info(chain)),
            "endpoints": [to_dict(r) for r in service.ranked_rpcs(chain)],
            "rpc_health": to_dict(chain.rpc_health) if chain.rpc_health else None,
        }

    @app.get("/api/summary")
    async def get_summary(request: Request):
        service = _service(request)
        snapshot = service.merger.snapshot
        summary = to_dict(service.merger.stats())
        summary.update(
            health_stale=service.merger.health_stale(),
            generated_at=snapshot.generated_at,
            health_refreshed_at=snapshot.health_refreshed_at,
            cache=to_dict(service.fetcher.cache_status()),
        )
        return summary

    @app.post("/api/health/refresh")
    async def refresh_health(request: Request, chain_id: Optional[List[int]] = Query(None)):
        service = _service(request)
        snapshot = await service.merger.refresh_health(chain_id)
        return {
            "chains": len(snapshot),
            "health_refreshed_at": snapshot.health_refreshed_at,
            "health_stale": service.merger.health_stale(),
        }

    return app


def main():
    configure_logging()
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
