import asyncio
import logging
from datetime import UTC
from datetime import datetime
from datetime import timedelta
from urllib.parse import quote

from app.core.exceptions import AuthFailureError
from app.core.exceptions import SigningFailureError
from app.models.export_models import DeliveryLink
from app.models.export_models import StoredObjectRef
from app.services.storage.s3_service import StorageClient

logger = logging.getLogger(__name__)


class LinkBroker:
    """Turns acknowledged uploads into client links.

    With ``public_base_url`` set the platform serves permanent URLs and the
    TTL is dropped; otherwise a presigned GET URL is issued and its expiry
    reported alongside.
    """

    def __init__(
        self,
        storage: StorageClient,
        default_ttl: int = 900,
        min_ttl: int = 60,
        max_ttl: int = 7 * 24 * 3600,
        public_base_url: str | None = None,
    ) -> None:
        self.storage = storage
        self.default_ttl = default_ttl
        self.min_ttl = min_ttl
        self.max_ttl = max_ttl
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def effective_ttl(self, ttl: int | None) -> int:
        if ttl is None:
            return self.default_ttl
        return max(self.min_ttl, min(self.max_ttl, ttl))

    async def issue_link(
        self,
        ref: StoredObjectRef,
        ttl: int | None = None,
        filename: str | None = None,
        request_id: str = "-",
    ) -> DeliveryLink:
        if self.public_base_url:
            url = f"{self.public_base_url}/{quote(ref.key)}"
            logger.info("[%s] Issued permanent link for %s", request_id, ref.key)
            return DeliveryLink(url=url, key=ref.key, checksum=ref.checksum, expires_at=None)

        seconds = self.effective_ttl(ttl)
        issued_at = datetime.now(UTC)
        try:
            url = await asyncio.to_thread(self.storage.sign, ref.key, seconds, filename)
        except (SigningFailureError, AuthFailureError):
            raise
        except Exception as e:
            logger.exception("[%s] Unexpected error signing link for %s", request_id, ref.key)
            raise SigningFailureError(f"Unexpected signing error: {e}") from e

        if not url:
            raise SigningFailureError(f"Signer returned no URL for {ref.key}")
        logger.info("[%s] Issued link for %s valid %ds", request_id, ref.key, seconds)
        return DeliveryLink(url=url, key=ref.key, checksum=ref.checksum, expires_at=issued_at + timedelta(seconds=seconds))
