#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Cleanup script to find stored objects that no paper or ethics clearance references
(left behind by failed submissions or manual edits).
"""

import os
from typing import Dict, List, Set

from vault_store import get_conn, list_papers
from object_storage import get_object_store, StorageError

# Import configuration
try:
    from config import (DB_PATH, STORAGE_BACKEND, STORAGE_DIR, SUPABASE_URL, SUPABASE_KEY,
                        PDF_BUCKET, COVERS_BUCKET, FIGURES_BUCKET, ETHICS_BUCKET)
except ImportError:
    # Fallback to environment variables if config.py doesn't exist
    DB_PATH = "vault.db"
    STORAGE_BACKEND = "local"
    STORAGE_DIR = "vault_storage"
    SUPABASE_URL = SUPABASE_KEY = ""
    PDF_BUCKET, COVERS_BUCKET, FIGURES_BUCKET, ETHICS_BUCKET = (
        "papers-pdf", "papers-covers", "papers-figures", "papers-pdf")

DB_PATH = os.environ.get("VAULT_DB", DB_PATH)


def referenced_objects(db_path: str, buckets: Dict[str, str]) -> Dict[str, Set[str]]:
    """bucket name -> object paths referenced by papers (PDF, cover, figures) and clearances."""
    refs: Dict[str, Set[str]] = {name: set() for name in buckets.values()}
    for paper in list_papers(db_path, status=None, limit=0):
        file_path = paper.get("file_path") or ""
        if file_path:
            refs[buckets["pdf"]].add(file_path)
            if paper.get("cover_url"):
                refs[buckets["covers"]].add(f"{file_path.rsplit('/', 1)[0]}/cover.png")
        for fig in paper.get("figures") or []:
            if isinstance(fig, dict) and fig.get("path"):
                refs[buckets["figures"]].add(fig["path"])

    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT storage_path FROM ethics_clearances WHERE storage_path IS NOT NULL;")
        refs[buckets["ethics"]].update(r[0] for r in cur.fetchall())
    finally:
        conn.close()
    return refs


def find_orphaned_objects(db_path: str, store, buckets: Dict[str, str]) -> Dict[str, List[str]]:
    refs = referenced_objects(db_path, buckets)
    orphans = {}
    for bucket, known in refs.items():
        stored = store.list_objects(bucket)
        orphans[bucket] = [p for p in stored if p not in known]
    return orphans


def cleanup_orphaned_files(db_path: str, store, buckets: Dict[str, str], dry_run: bool = True) -> int:
    """
    Report (and unless dry_run, delete) unreferenced objects.

    Returns the number of orphaned objects found.
    """
    print(f"{'DRY RUN: ' if dry_run else ''}Looking for orphaned files referenced by {db_path}")
    orphans = find_orphaned_objects(db_path, store, buckets)
    total = sum(len(paths) for paths in orphans.values())

    if total == 0:
        print("✓ No orphaned files found.")
        return 0

    for bucket, paths in orphans.items():
        if not paths:
            continue
        print(f"\n{bucket}: {len(paths)} orphaned file(s)")
        for path in paths:
            print(f"  {path}")
        if not dry_run:
            try:
                removed = store.remove(bucket, paths)
                print(f"✅ Deleted {removed} file(s) from {bucket}.")
            except StorageError as e:
                print(f"❌ Error deleting from {bucket}: {e}")

    if dry_run:
        print(f"\nDRY RUN: Would delete {total} file(s).")
        print("Run with --execute flag to actually delete.")
    return total


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Find stored files no record references")
    parser.add_argument("--execute", action="store_true", help="Actually delete the files (default is dry-run)")
    args = parser.parse_args()

    store = get_object_store(os.environ.get("VAULT_STORAGE_BACKEND", STORAGE_BACKEND),
                             os.environ.get("VAULT_STORAGE_DIR", STORAGE_DIR),
                             supabase_url=SUPABASE_URL, supabase_key=SUPABASE_KEY)
    buckets = {"pdf": PDF_BUCKET, "covers": COVERS_BUCKET, "figures": FIGURES_BUCKET, "ethics": ETHICS_BUCKET}

    print("=" * 70)
    print("Research Vault Storage Cleanup Utility")
    print("=" * 70)
    cleanup_orphaned_files(DB_PATH, store, buckets, dry_run=not args.execute)
    print("=" * 70)
