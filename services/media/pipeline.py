"""Upload coordinator: signed slots, the `complete` transaction and asset deletion.

State per upload::

    SIGNED -> UPLOADED (client, external) -> DOWNLOADING -> VALIDATING
           -> PROCESSING -> PERSISTING_BLOBS -> PERSISTING_RECORD -> COMPLETE

Any failure after UPLOADED ends in FAILED_CLEANUP. A database record is only
written once every blob is in storage, and blobs written for a failed attempt
are deleted again before the error is returned.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Sequence

import structlog

from core.config import Settings, settings as default_settings
from domain.dtos import CompleteResult, DeleteResult
from domain.entities import ImageAsset, ProcessedImage, UploadSlot
from domain.errors import (
    AssetInUseError,
    AssetNotFoundError,
    AssetPersistenceError,
    CompleteTimeoutError,
    FieldError,
    MediaValidationError,
    MimeMismatchError,
    ObjectNotFoundError,
    StorageUnavailableError,
    UploadInProgressError,
    UploadNotFoundError,
)
from domain.media_rules import media_type_for, normalize_mime
from infra.cache.redis import CompletionLocks
from infra.db.repositories.image_asset_repo import ImageAssetRepo
from infra.storage.object_storage import CACHE_IMMUTABLE, CACHE_ORIGINAL, ObjectStorage, StoredObject
from services.media import analysis, validators
from services.media.keys import UploadRef, is_valid_slug, new_asset_prefix, new_upload_ref, parse_upload_id
from services.media.processing import process


log = structlog.get_logger(__name__)


class UploadState(str, Enum):
    SIGNED = "signed"
    UPLOADED = "uploaded"
    DOWNLOADING = "downloading"
    VALIDATING = "validating"
    PROCESSING = "processing"
    PERSISTING_BLOBS = "persisting_blobs"
    PERSISTING_RECORD = "persisting_record"
    COMPLETE = "complete"
    FAILED_CLEANUP = "failed_cleanup"


class _Progress:
    def __init__(self, upload_id: str) -> None:
        self.upload_id = upload_id
        self.state = UploadState.UPLOADED

    def to(self, state: UploadState) -> None:
        self.state = state
        log.info("media_complete_state", upload_id=self.upload_id, state=state.value)


class MediaPipeline:
    def __init__(
        self,
        storage: ObjectStorage,
        assets: ImageAssetRepo,
        locks: CompletionLocks | None = None,
        cfg: Settings | None = None,
    ) -> None:
        self._storage = storage
        self._assets = assets
        self._locks = locks
        self._cfg = cfg or default_settings

    # ------------------------------------------------------------------ sign

    def sign(self, filename: str, content_type: str, size_bytes: int, kind: str, entity_slug: str) -> UploadSlot:
        mime = normalize_mime(content_type)
        errors, _warnings = validators.check_upload(size_bytes, mime, kind, self._cfg)
        if not is_valid_slug(entity_slug):
            errors.append(
                FieldError("entitySlug", "Slug must be lowercase letters, digits and single hyphens", "INVALID_SLUG")
            )
        if not errors and media_type_for(mime) != "image":
            errors.append(FieldError("contentType", "Only still images are processed by this pipeline", "UNSUPPORTED_MIME_TYPE"))
        if not errors:
            try:
                validators.validate_filename(filename, mime)
            except MediaValidationError as e:
                errors.extend(e.errors)
        if errors:
            raise MediaValidationError(errors)

        ref = new_upload_ref(entity_slug, kind)
        ttl = self._cfg.upload_url_ttl_sec
        url = self._storage.presign_put(ref.temp_key, mime, ttl)
        log.info("media_upload_signed", upload_id=ref.upload_id, filename=filename, content_type=mime, size_bytes=size_bytes)
        return UploadSlot(
            upload_id=ref.upload_id,
            temp_key=ref.temp_key,
            upload_url=url,
            declared_content_type=mime,
            declared_size=size_bytes,
            kind=kind,
            entity_slug=entity_slug,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=ttl),
            expires_in=ttl,
        )

    # -------------------------------------------------------------- complete

    async def complete(self, upload_id: str, alt_text: str | None) -> CompleteResult:
        ref = parse_upload_id(upload_id)
        validators.validate_alt_text(alt_text)

        if self._locks is not None and not await self._locks.acquire(ref.upload_id):
            raise UploadInProgressError(f"Upload {ref.upload_id} is already being completed")
        try:
            with structlog.contextvars.bound_contextvars(upload_id=ref.upload_id):
                return await asyncio.wait_for(self._complete(ref, alt_text), timeout=self._cfg.complete_timeout_sec)
        except asyncio.TimeoutError as e:
            log.error("media_complete_timeout", upload_id=ref.upload_id, timeout_sec=self._cfg.complete_timeout_sec)
            raise CompleteTimeoutError(f"complete exceeded {self._cfg.complete_timeout_sec:g}s") from e
        finally:
            if self._locks is not None:
                await self._locks.release(ref.upload_id)

    async def _complete(self, ref: UploadRef, alt_text: str | None) -> CompleteResult:
        progress = _Progress(ref.upload_id)
        try:
            progress.to(UploadState.DOWNLOADING)
            obj = await self._download(ref.temp_key)

            progress.to(UploadState.VALIDATING)
            warnings = await self._validate(ref, obj)

            progress.to(UploadState.PROCESSING)
            processed = await self._process(ref, obj)

            progress.to(UploadState.PERSISTING_BLOBS)
            uploaded = await self._upload_all(processed)
            await self._delete_temp(ref.temp_key)

            progress.to(UploadState.PERSISTING_RECORD)
            asset = await self._create_record(processed, alt_text, uploaded)

            progress.to(UploadState.COMPLETE)
        except BaseException as e:
            log.warning(
                "media_complete_failed",
                upload_id=ref.upload_id,
                state=UploadState.FAILED_CLEANUP.value,
                failed_at=progress.state.value,
                error=repr(e),
            )
            raise
        log.info("media_asset_created", asset_id=asset.id, key=asset.key, derivatives=len(processed.derivatives))
        return CompleteResult(asset=asset, content_hash=processed.content_hash, warnings=warnings)

    async def _download(self, temp_key: str) -> StoredObject:
        try:
            return await asyncio.to_thread(self._storage.get_object, temp_key)
        except ObjectNotFoundError as e:
            raise UploadNotFoundError(f"No uploaded object for {temp_key}") from e

    async def _validate(self, ref: UploadRef, obj: StoredObject) -> list[str]:
        declared = normalize_mime(obj.content_type or "")
        if not validators.verify_magic_bytes(obj.data, declared):
            log.warning("media_mime_mismatch", key=ref.temp_key, declared=declared, detected=validators.detect_mime(obj.data))
            await self._discard_temp(ref.temp_key)
            raise MimeMismatchError("File header doesn't match declared MIME type")
        try:
            warnings = validators.validate_upload(len(obj.data), declared, ref.kind, self._cfg)
            validators.validate_dimensions_and_aspect(obj.data, ref.kind)
        except MediaValidationError:
            await self._discard_temp(ref.temp_key)
            raise
        advisory = await self._brand_advisory(obj.data)
        if advisory:
            warnings.append(advisory)
        return warnings

    async def _brand_advisory(self, data: bytes) -> str | None:
        try:
            return await asyncio.to_thread(analysis.brand_color_advisory, data, self._cfg)
        except Exception as e:
            # informational only; never blocks an upload
            log.warning("media_brand_advisory_failed", error=str(e))
            return None

    async def _process(self, ref: UploadRef, obj: StoredObject) -> ProcessedImage:
        try:
            return await asyncio.to_thread(
                process, obj.data, ref.entity_slug, ref.kind, prefix=new_asset_prefix(), cfg=self._cfg
            )
        except Exception:
            # corrupt but signature-valid input will never succeed on retry
            await self._discard_temp(ref.temp_key)
            raise

    async def _upload_all(self, processed: ProcessedImage) -> list[str]:
        """Upload original and derivatives concurrently; on any failure delete what landed."""
        blobs = [(processed.original.key, processed.original.data, processed.original.content_type, CACHE_ORIGINAL)]
        blobs += [(d.key, d.data, d.content_type, CACHE_IMMUTABLE) for d in processed.derivatives]
        uploaded: list[str] = []

        async def put(key: str, data: bytes, content_type: str, cache_control: str) -> None:
            await asyncio.to_thread(self._storage.put_bytes, key, data, content_type, cache_control)
            uploaded.append(key)

        gathered = asyncio.gather(*(put(*b) for b in blobs), return_exceptions=True)
        try:
            results = await asyncio.shield(gathered)
        except asyncio.CancelledError:
            # threads cannot be interrupted; rollback only after every put has settled
            await asyncio.wait([gathered])
            await self._rollback([b[0] for b in blobs])
            raise
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            log.error("media_blob_upload_failed", failed=len(failures), total=len(blobs), error=str(failures[0]))
            await self._rollback(uploaded)
            raise StorageUnavailableError(f"{len(failures)} of {len(blobs)} blob uploads failed") from failures[0]
        return uploaded

    async def _create_record(self, processed: ProcessedImage, alt_text: str | None, uploaded: list[str]) -> ImageAsset:
        original = processed.original
        try:
            return await self._assets.create(
                bucket=self._storage.bucket_name,
                key=processed.base_key,
                mime=original.content_type,
                width=original.width,
                height=original.height,
                size_bytes=original.size_bytes,
                format=original.format,
                blurhash=processed.placeholder_hash,
                avg_color=processed.average_color,
                alt=alt_text,
                content_hash=processed.content_hash,
                derivatives=processed.manifest(),
            )
        except Exception as e:
            # a cancelled insert may still have committed, so blobs are only removed on a definite failure
            log.error("media_record_create_failed", key=processed.base_key, error=str(e))
            await self._rollback(uploaded)
            raise AssetPersistenceError(f"Could not persist asset record: {e}") from e

    async def _rollback(self, keys: Sequence[str]) -> list[str]:
        """Best-effort delete; returns keys that could not be removed (each one logged)."""
        results = await asyncio.gather(
            *(asyncio.to_thread(self._storage.delete, k) for k in keys), return_exceptions=True
        )
        leftover = []
        for key, res in zip(keys, results):
            if isinstance(res, BaseException):
                leftover.append(key)
                log.error("media_rollback_delete_failed", key=key, error=str(res))
        log.info("media_rollback", deleted=len(keys) - len(leftover), leftover=len(leftover))
        return leftover

    async def _discard_temp(self, temp_key: str) -> None:
        try:
            await asyncio.to_thread(self._storage.delete, temp_key)
        except Exception as e:
            log.error("media_temp_discard_failed", key=temp_key, error=str(e))

    async def _delete_temp(self, temp_key: str) -> None:
        # stray temp objects are collected by tools/media/sweep_uploads.py
        try:
            await asyncio.to_thread(self._storage.delete, temp_key)
        except Exception as e:
            log.warning("media_temp_delete_failed", key=temp_key, error=str(e))

    # ---------------------------------------------------------------- delete

    async def delete(self, asset_id: str) -> DeleteResult:
        asset = await self._assets.get(asset_id)
        if asset is None:
            raise AssetNotFoundError(f"Asset {asset_id} not found")
        usage = await self._assets.usage_counts(asset_id)
        if sum(usage.values()) > 0:
            raise AssetInUseError(usage)

        keys = asset.stored_keys()
        results = await asyncio.gather(
            *(asyncio.to_thread(self._storage.delete, k) for k in keys), return_exceptions=True
        )
        failed = [(k, r) for k, r in zip(keys, results) if isinstance(r, BaseException)]
        if failed:
            for key, err in failed:
                log.error("media_asset_blob_delete_failed", asset_id=asset_id, key=key, error=str(err))
            # keep the record so an operator can retry; never leave live blobs without one
            raise StorageUnavailableError(f"{len(failed)} of {len(keys)} blob deletes failed; asset kept")

        await self._assets.delete(asset_id)
        log.info("media_asset_deleted", asset_id=asset_id, keys=len(keys))
        return DeleteResult(asset_id=asset_id, deleted_keys=keys)
