#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Object storage for uploaded papers, covers, figures and ethics clearances.

Two backends share the same small interface (upload, public_url, download,
remove, exists, list_objects):

- LocalObjectStore writes under <root>/<bucket>/<path>; the API serves the
  files back from /api/files/<bucket>/<path>.
- SupabaseObjectStore talks to Supabase Storage buckets through the
  supabase client.
"""

import os
import logging
import mimetypes
import posixpath
from pathlib import Path
from typing import List

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when an object cannot be stored, read or removed."""


def clean_object_path(path: str) -> str:
    """Normalise a bucket-relative path and refuse anything escaping the bucket."""
    raw = (path or "").replace("\\", "/").strip()
    norm = posixpath.normpath("/" + raw).lstrip("/")
    if not norm or norm == "." or ".." in norm.split("/"):
        raise StorageError(f"Invalid object path: {path!r}")
    return norm


def guess_content_type(path: str, default: str = "application/octet-stream") -> str:
    return mimetypes.guess_type(path)[0] or default


class LocalObjectStore:
    backend = "local"

    def __init__(self, root_dir: str, public_base_url: str = ""):
        self.root_dir = os.path.abspath(root_dir)
        self.public_base_url = (public_base_url or "").rstrip("/")
        os.makedirs(self.root_dir, exist_ok=True)

    def _full_path(self, bucket: str, path: str) -> str:
        bucket = clean_object_path(bucket)
        return os.path.join(self.root_dir, bucket, *clean_object_path(path).split("/"))

    def upload(self, bucket: str, path: str, data: bytes, content_type: str = None) -> str:
        full = self._full_path(bucket, path)
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, "wb") as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f"Failed to write {bucket}/{path}: {e}") from e
        logger.debug(f"Stored {len(data)} bytes at {bucket}/{path}")
        return clean_object_path(path)

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}/api/files/{clean_object_path(bucket)}/{clean_object_path(path)}"

    def download(self, bucket: str, path: str) -> bytes:
        full = self._full_path(bucket, path)
        try:
            with open(full, "rb") as f:
                return f.read()
        except FileNotFoundError as e:
            raise StorageError(f"Object not found: {bucket}/{path}") from e
        except OSError as e:
            raise StorageError(f"Failed to read {bucket}/{path}: {e}") from e

    def remove(self, bucket: str, paths: List[str]) -> int:
        removed = 0
        for path in paths:
            full = self._full_path(bucket, path)
            if os.path.isfile(full):
                try:
                    os.remove(full)
                    removed += 1
                except OSError as e:
                    raise StorageError(f"Failed to remove {bucket}/{path}: {e}") from e
        return removed

    def exists(self, bucket: str, path: str) -> bool:
        return os.path.isfile(self._full_path(bucket, path))

    def list_objects(self, bucket: str) -> List[str]:
        base = Path(self.root_dir) / clean_object_path(bucket)
        if not base.is_dir():
            return []
        return sorted(p.relative_to(base).as_posix() for p in base.rglob("*") if p.is_file())


class SupabaseObjectStore:
    backend = "supabase"

    def __init__(self, url: str, key: str, client=None):
        if client is None:
            if not url or not key:
                raise StorageError("SUPABASE_URL and SUPABASE_KEY are required for the supabase backend")
            from supabase import create_client
            client = create_client(url, key)
        self.client = client

    def _bucket(self, bucket: str):
        return self.client.storage.from_(bucket)

    def upload(self, bucket: str, path: str, data: bytes, content_type: str = None) -> str:
        path = clean_object_path(path)
        options = {"content-type": content_type or guess_content_type(path), "upsert": "true"}
        try:
            self._bucket(bucket).upload(path, data, file_options=options)
        except Exception as e:
            raise StorageError(f"Supabase upload failed for {bucket}/{path}: {e}") from e
        return path

    def public_url(self, bucket: str, path: str) -> str:
        url = self._bucket(bucket).get_public_url(clean_object_path(path))
        # Older clients return a trailing '?'
        return url.rstrip("?") if isinstance(url, str) else url

    def download(self, bucket: str, path: str) -> bytes:
        try:
            return self._bucket(bucket).download(clean_object_path(path))
        except Exception as e:
            raise StorageError(f"Supabase download failed for {bucket}/{path}: {e}") from e

    def remove(self, bucket: str, paths: List[str]) -> int:
        paths = [clean_object_path(p) for p in paths]
        if not paths:
            return 0
        try:
            result = self._bucket(bucket).remove(paths)
        except Exception as e:
            raise StorageError(f"Supabase remove failed for {bucket}: {e}") from e
        return len(result) if isinstance(result, list) else len(paths)

    def exists(self, bucket: str, path: str) -> bool:
        path = clean_object_path(path)
        folder, _, name = path.rpartition("/")
        try:
            entries = self._bucket(bucket).list(folder)
        except Exception as e:
            logger.warning(f"Supabase list failed for {bucket}/{folder}: {e}")
            return False
        return any(entry.get("name") == name for entry in entries or [])

    def list_objects(self, bucket: str, prefix: str = "") -> List[str]:
        """Walk the bucket recursively. Entries without an id are folders."""
        found = []
        try:
            entries = self._bucket(bucket).list(prefix) or []
        except Exception as e:
            raise StorageError(f"Supabase list failed for {bucket}/{prefix}: {e}") from e
        for entry in entries:
            name = entry.get("name")
            if not name:
                continue
            child = f"{prefix}/{name}" if prefix else name
            if entry.get("id") is None:
                found.extend(self.list_objects(bucket, child))
            else:
                found.append(child)
        return sorted(found)


def get_object_store(backend: str, storage_dir: str = "vault_storage", public_base_url: str = "",
                     supabase_url: str = "", supabase_key: str = ""):
    """Build the configured object store."""
    backend = (backend or "local").strip().lower()
    if backend == "local":
        return LocalObjectStore(storage_dir, public_base_url)
    if backend == "supabase":
        return SupabaseObjectStore(supabase_url, supabase_key)
    raise ValueError(f"Invalid STORAGE_BACKEND: {backend}. Must be 'local' or 'supabase'")
