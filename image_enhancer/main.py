from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import structlog
from fastapi import FastAPI, File, HTTPException, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from .config import settings
from .errors import ErrorKind
from .pipeline import EnhancementPipeline, PipelineBusyError
from .schemas import EnhancementRequest, ResourceHandle
from .stores import Language, LanguageStore, TokenStore

log = structlog.get_logger()

DOWNLOAD_NAME = "enhanced-image.png"

_HTTP_STATUS = {
    ErrorKind.CONFIGURATION: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.AUTH: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.VALIDATION: 422,
    ErrorKind.NETWORK: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.REMOTE_PROCESSING: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    ErrorKind.UNKNOWN: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def build_pipeline() -> EnhancementPipeline:
    return EnhancementPipeline.from_settings(settings)


class LanguageUpdate(BaseModel):
    language: Optional[Language] = None  # None toggles


@asynccontextmanager
async def lifespan(app: FastAPI):
    state_dir = Path(settings.state_dir)
    app.state.pipeline = build_pipeline()
    app.state.tokens = TokenStore(state_dir / "tokens.json")
    app.state.language = LanguageStore(state_dir / "language.json")
    log.info("service_starting", proxy=settings.proxy_base_url,
             tokens=app.state.tokens.value, language=app.state.language.value)

    yield

    log.info("service_stopping")
    app.state.pipeline.reset()
    await app.state.pipeline.aclose()


app = FastAPI(title="image-enhancer", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def _image_response(handle: ResourceHandle) -> Response:
    return Response(
        content=handle.data,
        media_type=handle.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{DOWNLOAD_NAME}"',
            "X-Resource-Id": handle.id,
        },
    )


@app.post("/run")
async def run(raw: Request, file: UploadFile = File(...)):
    """
    Enhance one uploaded image. Costs one credit; with no credits left the
    caller must earn one through /reward first.
    """
    request_id = raw.headers.get("X-Request-ID", str(uuid.uuid4()))
    pipeline: EnhancementPipeline = raw.app.state.pipeline
    tokens: TokenStore = raw.app.state.tokens

    if not (file.content_type or "").startswith("image/"):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Please select a valid image file.")
    content = await file.read()
    if not content:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Uploaded image is empty.")

    if tokens.value <= 0:
        raise HTTPException(
            status.HTTP_402_PAYMENT_REQUIRED,
            {"kind": "reward_required", "message": "No credits left. Watch an ad to earn one."},
        )
    if pipeline.in_flight:
        raise HTTPException(status.HTTP_409_CONFLICT, "An enhancement is already in progress.")

    tokens.decrement(1)
    log.info("request_received", request_id=request_id, filename=file.filename,
             size=len(content), tokens=tokens.value)

    try:
        result = await pipeline.enhance(
            EnhancementRequest(content, file.content_type), settings.replicate_api_token
        )
    except PipelineBusyError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, str(exc))

    if not result.ok:
        err = result.error
        log.error("request_failed", request_id=request_id, kind=err.kind.value, err=err.message)
        raise HTTPException(_HTTP_STATUS[err.kind], err.to_dict())

    log.info("response_ready", request_id=request_id, handle=result.value.id)
    return _image_response(result.value)


@app.get("/result")
async def result(raw: Request):
    """Download the most recent enhanced image again."""
    handle = raw.app.state.pipeline.current
    if handle is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "No enhanced image available.")
    return _image_response(handle)


@app.post("/reset")
async def reset(raw: Request):
    raw.app.state.pipeline.reset()
    return {"ok": True}


@app.get("/tokens")
async def get_tokens(raw: Request):
    return {"tokens": raw.app.state.tokens.value}


@app.post("/reward")
async def reward(raw: Request):
    """Credit granted after a watched ad."""
    return {"tokens": raw.app.state.tokens.increment(1)}


@app.get("/language")
async def get_language(raw: Request):
    return {"language": raw.app.state.language.value}


@app.post("/language")
async def set_language(update: LanguageUpdate, raw: Request):
    store: LanguageStore = raw.app.state.language
    if update.language is None:
        store.toggle()
    else:
        store.save(update.language)
    return {"language": store.value}


@app.get("/health")
async def health(raw: Request):
    """Readiness probe."""
    pipeline: EnhancementPipeline = raw.app.state.pipeline
    return JSONResponse({
        "ok": True,
        "state": pipeline.state.value,
        "in_flight": pipeline.in_flight,
        "configured": bool(settings.replicate_api_token),
    })


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "image_enhancer.main:app",
        host="0.0.0.0",
        port=settings.service_port,
        log_level="info",
    )
