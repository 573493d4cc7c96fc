import hashlib
import hmac

from fastapi import Depends, Header, HTTPException, Request, status

from repoweaver.core.config import Settings, get_settings

SIGNATURE_PREFIX = "sha256="


def compute_webhook_signature(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_webhook_signature(secret: str, body: bytes, signature_header: str | None) -> bool:
    """Check an ``X-Hub-Signature-256`` value against the raw request body."""
    if not signature_header or not signature_header.startswith(SIGNATURE_PREFIX):
        return False
    expected = compute_webhook_signature(secret, body)
    return hmac.compare_digest(expected, signature_header.strip())


async def require_webhook_signature(
    request: Request,
    settings: Settings = Depends(get_settings),
    x_hub_signature_256: str | None = Header(default=None, alias="X-Hub-Signature-256"),
) -> bytes:
    if settings.webhook_secret is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="webhook secret is not configured",
        )
    body = await request.body()
    if not verify_webhook_signature(settings.webhook_secret.get_secret_value(), body, x_hub_signature_256):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid webhook signature")
    return body


async def require_api_key(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> None:
    if settings.api_key is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="API key auth is not configured",
        )
    provided = request.headers.get(settings.api_key_header)
    if not provided:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"request requires {settings.api_key_header}",
        )
    if not hmac.compare_digest(provided.encode("utf-8"), settings.api_key.get_secret_value().encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid API key")
