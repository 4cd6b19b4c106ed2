# File download endpoint
# Streams a stored object; single-use objects are spent once the stream closes

from collections.abc import Mapping

from werkzeug import Request, Response

from dify_plugin import Endpoint

from endpoints._responses import content_disposition, error_response, handle_errors
from store import runtime
from store.ids import is_valid_id


class FileDownloadEndpoint(Endpoint):
    def _invoke(self, r: Request, values: Mapping, settings: Mapping) -> Response:
        file_id = values.get("file_id", "")
        if not is_valid_id(file_id):
            return error_response("File not found or has been deleted.", 404)
        return handle_errors(lambda: self._download(file_id))

    def _download(self, file_id: str) -> Response:
        download = runtime.get_service().fetch(file_id)

        response = Response(
            download,
            status=200,
            content_type=download.mime_type,
            headers={
                "Content-Disposition": content_disposition(download.original_name),
                "Cache-Control": "no-store",
                "X-Content-Type-Options": "nosniff",
            },
        )
        response.content_length = download.size_bytes
        return response
