from fastapi import APIRouter, Request

from todochain import __version__

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    store = getattr(request.app.state, "plan_store", None)
    return {
        "status": "healthy",
        "service": "todochain",
        "version": __version__,
        "plan_store": type(store).__name__ if store is not None else None,
    }
