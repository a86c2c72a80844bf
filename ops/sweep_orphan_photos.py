from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path

from sqlalchemy import select

from listings_api.core.config import settings
from listings_api.core.db import SessionLocal, engine
from listings_api.models.listing import Listing
from listings_api.services.storage import LocalObjectStore


log = logging.getLogger("sweep_orphan_photos")

DEFAULT_MIN_AGE_MINUTES = 60


async def referenced_paths(store: LocalObjectStore) -> set[Path]:
    async with SessionLocal() as db:
        rows = (await db.execute(select(Listing.photos))).scalars().all()

    paths: set[Path] = set()
    for photos in rows:
        for ref in photos or []:
            if ref and store.owns(ref):
                paths.add(store.resolve_path(ref).resolve())
    return paths


def find_orphans(store: LocalObjectStore, referenced: set[Path], *, min_age_seconds: float) -> list[Path]:
    """
    Files under the upload dir that no listing points at.
    Recent files are skipped: they may belong to a request still in flight.
    """
    cutoff = time.time() - min_age_seconds
    orphans = []
    for path in sorted(store.base.rglob("*")):
        if not path.is_file():
            continue
        if path.resolve() in referenced:
            continue
        if path.stat().st_mtime > cutoff:
            continue
        orphans.append(path)
    return orphans


async def run(*, apply: bool, min_age_minutes: int) -> int:
    store = LocalObjectStore(settings.upload_dir, settings.upload_public_path)
    try:
        referenced = await referenced_paths(store)
    finally:
        await engine.dispose()

    orphans = find_orphans(store, referenced, min_age_seconds=min_age_minutes * 60)
    log.info("%d referenced photo(s), %d orphan(s) under %s", len(referenced), len(orphans), store.base)

    removed = 0
    for path in orphans:
        if not apply:
            print(path)
            continue
        try:
            path.unlink()
            removed += 1
        except OSError:
            log.warning("could not remove %s", path, exc_info=True)

    if apply:
        log.info("removed %d orphan(s)", removed)
    return 0


def main() -> int:
    p = argparse.ArgumentParser(description="Find (and optionally delete) local photo files no listing references.")
    p.add_argument("--apply", action="store_true", help="delete the orphans instead of listing them")
    p.add_argument("--yes", action="store_true", help="required with --apply (safety)")
    p.add_argument("--min-age-minutes", type=int, default=DEFAULT_MIN_AGE_MINUTES)
    args = p.parse_args()

    logging.basicConfig(level=logging.INFO)

    if settings.storage_backend != "local":
        print("Orphan sweep only supports the local storage backend.", file=sys.stderr)
        return 2

    if args.apply and not args.yes:
        print("Refusing to delete without --yes (safety).", file=sys.stderr)
        return 2

    return asyncio.run(run(apply=args.apply, min_age_minutes=args.min_age_minutes))


if __name__ == "__main__":
    raise SystemExit(main())
