# app/services/storage/cleanup_s3_job.py
"""Deletes exported documents older than the retention window.

Links issued for an export expire long before the object is swept, so the
sweep never removes an object a live link still points at as long as
``s3_cleanup_max_age_hours`` exceeds ``max_link_ttl``.
"""

import logging
from datetime import UTC
from datetime import datetime
from datetime import timedelta
from typing import Any

from botocore.exceptions import ClientError

from app.core.config import ExportConfig
from app.core.config import settings
from app.services.storage.s3_service import build_s3_client

logger = logging.getLogger(__name__)

# S3 delete_objects accetta al massimo 1000 chiavi per chiamata
DELETE_BATCH_SIZE = 1000


def run_s3_cleanup(
    s3: Any | None = None,
    bucket: str | None = None,
    prefix: str | None = None,
    max_age_hours: int | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    """Sweep ``prefix`` in ``bucket`` and return scanned/deleted/errors counts.

    ``errors`` is non-zero when listing or deleting failed part-way; objects
    deleted before the failure are still counted.
    """
    bucket = bucket or settings.s3_bucket_name
    prefix = settings.export_key_prefix if prefix is None else prefix
    max_age_hours = settings.s3_cleanup_max_age_hours if max_age_hours is None else max_age_hours
    if not bucket:
        logger.error("S3 bucket name not configured for cleanup job. Exiting.")
        return {"scanned": 0, "deleted": 0, "errors": 1}
    if s3 is None:
        s3 = build_s3_client(ExportConfig.from_settings(settings))

    logger.info(f"Starting S3 cleanup for prefix '{prefix}' in bucket '{bucket}'.")
    logger.info(f"Objects older than {max_age_hours} hours will be deleted.")

    cutoff_time = (now or datetime.now(UTC)) - timedelta(hours=max_age_hours)
    objects_to_delete: list[dict[str, str]] = []
    deleted_count = 0
    scanned_count = 0
    error_count = 0

    def _flush() -> None:
        nonlocal deleted_count, objects_to_delete
        s3.delete_objects(Bucket=bucket, Delete={"Objects": objects_to_delete, "Quiet": True})
        deleted_count += len(objects_to_delete)
        logger.info(f"Deleted batch of {len(objects_to_delete)} objects.")
        objects_to_delete = []

    try:
        paginator = s3.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                scanned_count += 1
                obj_key = obj["Key"]
                # Skip "folder" placeholders
                if obj_key.endswith("/") and obj.get("Size", 0) == 0:
                    continue

                last_modified = obj["LastModified"]
                if last_modified.tzinfo is None:
                    last_modified = last_modified.replace(tzinfo=UTC)
                if last_modified < cutoff_time:
                    objects_to_delete.append({"Key": obj_key})
                    logger.debug(f"Marked for deletion: {obj_key} (Last Modified: {last_modified})")

                if len(objects_to_delete) >= DELETE_BATCH_SIZE:
                    _flush()

        if objects_to_delete:
            _flush()

        logger.info(f"S3 Cleanup complete. Scanned {scanned_count} objects. Deleted {deleted_count} objects.")
    except ClientError as e:
        logger.error(f"ClientError during S3 cleanup: {e}", exc_info=True)
        error_count += 1

    return {"scanned": scanned_count, "deleted": deleted_count, "errors": error_count}


if __name__ == "__main__":
    from app.core.logging import setup_logging

    setup_logging()
    logger.info("Running S3 cleanup script directly...")
    run_s3_cleanup()
    logger.info("S3 cleanup script finished.")
