from __future__ import annotations

import argparse
from datetime import datetime, timedelta, timezone
from typing import List

import structlog

from core.config import settings
from core.logging import configure_logging
from infra.storage.object_storage import ObjectStorage, create_object_storage
from services.media.keys import UPLOAD_NAMESPACE


log = structlog.get_logger("sweep_uploads")


def find_stale_uploads(storage: ObjectStorage, older_than: timedelta, now: datetime | None = None) -> List[str]:
    cutoff = (now or datetime.now(timezone.utc)) - older_than
    return [o.key for o in storage.list_objects(f"{UPLOAD_NAMESPACE}/") if o.last_modified < cutoff]


def sweep(storage: ObjectStorage, older_than: timedelta, dry_run: bool = False) -> List[str]:
    stale = find_stale_uploads(storage, older_than)
    removed: List[str] = []
    for key in stale:
        if dry_run:
            print(key)
            continue
        storage.delete(key)
        removed.append(key)
        log.info("upload_swept", key=key)
    return removed


def main() -> None:
    parser = argparse.ArgumentParser(description="Delete temporary upload objects that were never completed")
    parser.add_argument("--older-than", type=int, default=60, help="minutes since last modification")
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    configure_logging(settings.log_level)
    storage = create_object_storage(settings)
    removed = sweep(storage, timedelta(minutes=args.older_than), dry_run=args.dry_run)
    log.info("sweep_done", removed=len(removed), dry_run=args.dry_run)


if __name__ == "__main__":
    main()
