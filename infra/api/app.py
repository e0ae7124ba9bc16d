from __future__ import annotations

import asyncio

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from core.config import Settings, settings as default_settings
from core.logging import configure_logging
from domain.entities import ImageAsset
from domain.errors import (
    AssetInUseError,
    DomainError,
    InvalidUploadIdError,
    MediaValidationError,
    MimeMismatchError,
    NotFoundError,
    StorageUnavailableError,
    UnreadableImageError,
    UploadInProgressError,
)
from domain.media_rules import normalize_mime
from infra.cache.redis import CompletionLocks, create_redis
from infra.db.repositories.image_asset_repo import ImageAssetRepo
from infra.db.session import get_session
from infra.storage.object_storage import LocalObjectStorage, ObjectStorage, create_object_storage
from services.media.keys import UPLOAD_NAMESPACE, build_cdn_url, build_srcset
from services.media.pipeline import MediaPipeline
from .schemas import (
    AssetListResponse,
    CompleteUploadRequest,
    CompleteUploadResponse,
    DeleteAssetRequest,
    DeleteAssetResponse,
    ImageAssetOut,
    SignUploadRequest,
    SignUploadResponse,
)


log = structlog.get_logger("api")


def _preferred_key(asset: ImageAsset) -> str:
    sizes = [s for s in (asset.derivatives or {}).get("sizes", []) if s.get("format") == "avif"]
    fitting = [s for s in sizes if max(s["width"], s["height"]) <= 1280]
    if fitting:
        return max(fitting, key=lambda s: s["width"])["key"]
    if sizes:
        return min(sizes, key=lambda s: s["width"])["key"]
    return (asset.derivatives or {}).get("original", {}).get("key", asset.key)


def asset_payload(asset: ImageAsset, cfg: Settings) -> ImageAssetOut:
    sizes = (asset.derivatives or {}).get("sizes", [])
    return ImageAssetOut(
        id=asset.id,
        bucket=asset.bucket,
        key=asset.key,
        mime=asset.mime,
        width=asset.width,
        height=asset.height,
        bytes=asset.bytes,
        format=asset.format,
        blurhash=asset.placeholder_hash,
        avg_color=asset.average_color,
        alt=asset.alt_text,
        content_hash=asset.content_hash,
        derivatives=asset.derivatives,
        cdn_url=build_cdn_url(cfg.cdn_base_url, _preferred_key(asset), asset.content_hash),
        srcset=build_srcset(cfg.cdn_base_url, sizes, asset.content_hash),
    )


def _error(status: int, body: dict) -> JSONResponse:
    return JSONResponse(status_code=status, content=jsonable_encoder(body))


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def on_request_invalid(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [
            {"field": ".".join(str(p) for p in e.get("loc", ())[1:]), "message": e.get("msg", ""), "code": "INVALID_REQUEST"}
            for e in exc.errors()
        ]
        return _error(400, {"error": "Invalid request", "details": details})

    @app.exception_handler(DomainError)
    async def on_domain_error(request: Request, exc: DomainError) -> JSONResponse:
        if isinstance(exc, MediaValidationError):
            return _error(400, {"error": "Validation failed", "details": [e.as_dict() for e in exc.errors]})
        if isinstance(exc, MimeMismatchError):
            return _error(
                400,
                {
                    "error": "MIME type verification failed",
                    "details": [
                        {"field": "file", "message": "File header doesn't match declared MIME type", "code": exc.code}
                    ],
                },
            )
        if isinstance(exc, AssetInUseError):
            return _error(400, {"error": str(exc), "code": exc.code, "usage": exc.usage})
        if isinstance(exc, (InvalidUploadIdError, UnreadableImageError)):
            log.error("media_unrecoverable", code=exc.code, error=str(exc))
            return _error(400, {"error": str(exc), "code": exc.code})
        if isinstance(exc, NotFoundError):
            return _error(404, {"error": str(exc), "code": exc.code})
        if isinstance(exc, UploadInProgressError):
            return _error(409, {"error": str(exc), "code": exc.code})
        if isinstance(exc, StorageUnavailableError):
            log.error("media_storage_unavailable", error=str(exc))
            return _error(503, {"error": "Storage unavailable", "code": exc.code, "message": str(exc)})
        log.error("media_domain_error", code=exc.code, error=str(exc))
        return _error(500, {"error": "Internal server error", "code": exc.code, "message": str(exc)})

    @app.exception_handler(Exception)
    async def on_unexpected(request: Request, exc: Exception) -> JSONResponse:
        log.exception("media_unexpected_error", path=str(request.url.path))
        return _error(500, {"error": "Internal server error", "message": str(exc)})


def create_app(
    cfg: Settings | None = None,
    storage: ObjectStorage | None = None,
    locks: CompletionLocks | None = None,
) -> FastAPI:
    cfg = cfg or default_settings
    configure_logging(cfg.log_level)
    app = FastAPI(title="Media Pipeline API", version="0.1.0")
    app.state.settings = cfg
    app.state.storage = storage or create_object_storage(cfg)
    app.state.locks = locks if locks is not None else CompletionLocks(create_redis(cfg), cfg.complete_lock_ttl_sec)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.allowed_origins.split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _install_error_handlers(app)

    def get_pipeline(session: AsyncSession = Depends(get_session)) -> MediaPipeline:
        return MediaPipeline(
            storage=app.state.storage,
            assets=ImageAssetRepo(session),
            locks=app.state.locks,
            cfg=cfg,
        )

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/media/sign", response_model=SignUploadResponse)
    def sign_upload(payload: SignUploadRequest, pipeline: MediaPipeline = Depends(get_pipeline)) -> SignUploadResponse:
        slot = pipeline.sign(
            filename=payload.filename,
            content_type=payload.content_type,
            size_bytes=payload.size_bytes,
            kind=payload.kind,
            entity_slug=payload.entity_slug,
        )
        return SignUploadResponse(
            upload_id=slot.upload_id,
            upload_url=slot.upload_url,
            key=slot.temp_key,
            expires_in=slot.expires_in,
        )

    @app.post(
        "/api/media/complete",
        status_code=201,
        response_model=CompleteUploadResponse,
        response_model_exclude_none=True,
    )
    async def complete_upload(
        payload: CompleteUploadRequest, pipeline: MediaPipeline = Depends(get_pipeline)
    ) -> CompleteUploadResponse:
        result = await pipeline.complete(payload.upload_id, payload.alt)
        return CompleteUploadResponse(
            image_asset=asset_payload(result.asset, cfg),
            warnings=result.warnings or None,
        )

    @app.delete("/api/media/delete", response_model=DeleteAssetResponse)
    async def delete_asset(payload: DeleteAssetRequest, pipeline: MediaPipeline = Depends(get_pipeline)):
        if payload.type != "image":
            return _error(400, {"error": "Invalid media type", "code": "UNSUPPORTED_MEDIA_TYPE"})
        result = await pipeline.delete(payload.asset_id)
        return DeleteAssetResponse(success=True, deleted_keys=result.deleted_keys)

    @app.get("/api/media/assets", response_model=AssetListResponse)
    async def list_assets(
        limit: int = Query(50, ge=1, le=200), session: AsyncSession = Depends(get_session)
    ) -> AssetListResponse:
        assets = await ImageAssetRepo(session).list_recent(limit=limit)
        return AssetListResponse(items=[asset_payload(a, cfg) for a in assets])

    # Direct upload target for local-storage mode; S3 deployments upload to the bucket instead.
    @app.put("/api/media/uploads/{key:path}", status_code=204)
    async def local_upload(key: str, request: Request, expires: int = Query(...), sig: str = Query(...)) -> Response:
        storage = app.state.storage
        if not isinstance(storage, LocalObjectStorage) or not key.startswith(f"{UPLOAD_NAMESPACE}/"):
            return _error(404, {"error": "Not found"})
        content_type = normalize_mime(request.headers.get("content-type", ""))
        if not storage.verify_signature(key, content_type, expires, sig):
            return _error(403, {"error": "Invalid or expired upload signature"})
        limit = max(cfg.image_max_bytes, cfg.video_max_bytes)
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > limit:
            return _error(413, {"error": "Payload too large"})
        body = await request.body()
        if len(body) > limit:
            return _error(413, {"error": "Payload too large"})
        await asyncio.to_thread(storage.put_bytes, key, body, content_type)
        log.info("media_local_upload", key=key, size=len(body))
        return Response(status_code=204)

    return app
