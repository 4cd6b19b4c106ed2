# Shared response helpers for the QuickShare endpoints

import json
import logging
from collections.abc import Callable
from typing import Any
from urllib.parse import quote

from werkzeug import Request, Response
from werkzeug.exceptions import RequestEntityTooLarge
from werkzeug.utils import secure_filename

from store.errors import SizeExceeded, StoreError

logger = logging.getLogger(__name__)


def json_response(body: dict[str, Any], status: int = 200) -> Response:
    return Response(
        json.dumps(body, ensure_ascii=False),
        status=status,
        content_type="application/json; charset=utf-8",
        headers={"Cache-Control": "no-store"},
    )


def error_response(message: str, status: int) -> Response:
    return json_response({"error": message}, status=status)


def store_error_response(error: StoreError) -> Response:
    return error_response(error.message, error.status_code)


def handle_errors(fn: Callable[[], Response]) -> Response:
    """Run an endpoint body, translating store errors to status codes."""
    try:
        return fn()
    except StoreError as e:
        if e.status_code >= 500:
            logger.error("Store failure: %s", e)
        return store_error_response(e)
    except RequestEntityTooLarge:
        return store_error_response(SizeExceeded())
    except Exception:
        logger.exception("Unexpected endpoint failure")
        return error_response("Internal server error", 500)


def content_disposition(filename: str) -> str:
    """attachment header with an ASCII fallback and the UTF-8 original name."""
    fallback = secure_filename(filename) or "download"
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def download_url(r: Request, object_id: str, public_base_url: str = "") -> str:
    base = public_base_url or r.host_url.rstrip("/")
    return f"{base}/download/{object_id}"
