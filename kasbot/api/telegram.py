import logging
import secrets

from fastapi import APIRouter, HTTPException, Request, status

from ..config import get_settings
from ..telegram.bot import BotNotInitialisedError, handle_update

logger = logging.getLogger(__name__)

router = APIRouter()


def verify_secret(secret: str) -> None:
    expected = get_settings().telegram_webhook_secret
    if not expected or not secrets.compare_digest(secret, expected):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)


@router.post("/webhook/{secret}", status_code=status.HTTP_204_NO_CONTENT)
async def telegram_webhook(secret: str, request: Request) -> None:
    verify_secret(secret)
    payload = await request.json()
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Update must be a JSON object")
    try:
        await handle_update(payload)
    except BotNotInitialisedError as exc:
        logger.warning("Dropping Telegram update %s: bot not initialised", payload.get("update_id"))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
