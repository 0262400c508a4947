from __future__ import annotations

import base64
import io
from typing import Dict, List, Optional

import structlog
from PIL import Image, UnidentifiedImageError

from .schemas import EnhancementRequest, ResourceHandle

log = structlog.get_logger()

OCTET_STREAM = "application/octet-stream"


def sniff_media_type(data: bytes) -> str:
    """Media type of an image from its bytes; octet-stream if Pillow can't tell."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError):
        return OCTET_STREAM
    return Image.MIME.get(fmt or "", OCTET_STREAM)


class ImageCodec:
    """
    Turns input images into data URIs for the prediction request and keeps
    track of the resource handles it hands out for downloaded results.
    """

    def __init__(self):
        self._live: Dict[str, ResourceHandle] = {}

    def encode(self, request: EnhancementRequest) -> str:
        media_type = request.media_type or sniff_media_type(request.data)
        encoded = base64.b64encode(request.data).decode("ascii")
        log.debug("image_encoded", media_type=media_type,
                  size=len(request.data), encoded_size=len(encoded))
        return f"data:{media_type};base64,{encoded}"

    def media_type_of(self, data: bytes, media_type: Optional[str] = None) -> str:
        if media_type and media_type.startswith("image/"):
            return media_type
        return sniff_media_type(data)

    def wrap(self, data: bytes, media_type: Optional[str] = None) -> ResourceHandle:
        media_type = self.media_type_of(data, media_type)
        handle = ResourceHandle(data, media_type)
        self._live[handle.id] = handle
        log.debug("resource_wrapped", handle=handle.id, media_type=media_type, size=handle.size)
        return handle

    def release(self, handle: Optional[ResourceHandle]) -> None:
        if handle is None:
            return
        self._live.pop(handle.id, None)
        if not handle.live:
            return
        handle._drop()
        log.debug("resource_released", handle=handle.id)

    @property
    def live_handles(self) -> List[ResourceHandle]:
        return list(self._live.values())
