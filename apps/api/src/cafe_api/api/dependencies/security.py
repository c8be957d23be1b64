from fastapi import Header, HTTPException, status

from cafe_api.core.settings import settings


async def require_cron_key(x_cron_key: str = Header("", alias="X-Cron-Key")) -> None:
    """Guard scheduled-job triggers; refuses every call when no key is configured."""

    if not settings.cron_api_key or x_cron_key != settings.cron_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron key",
        )
