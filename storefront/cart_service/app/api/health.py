from fastapi import APIRouter, Request, status

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", status_code=status.HTTP_200_OK)
async def healthcheck(request: Request) -> dict[str, str]:
    """Report liveness; the cart sync layer polls this to detect connectivity."""

    return {"status": "ok", "service": request.app.state.settings.app_name}
