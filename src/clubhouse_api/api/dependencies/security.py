from fastapi import Header, HTTPException, status

from clubhouse_api.core.settings import settings


async def require_admin_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    if not settings.admin_api_key:
        return

    if x_api_key != settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )


async def admin_actor(x_actor: str | None = Header(None, alias="X-Actor")) -> str:
    """Staff identifier recorded on check-outs, confirmations and ledger entries."""

    return (x_actor or "").strip() or "admin"
