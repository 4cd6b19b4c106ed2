# File upload endpoint
# Accepts a multipart upload (field "userFile" or "file") or a raw request body

from collections.abc import Mapping

from werkzeug import Request, Response

from dify_plugin import Endpoint

from endpoints._responses import download_url, error_response, handle_errors, json_response
from store import runtime
from store.errors import SizeExceeded
from store.models import ConsumptionPolicy

# Both spellings are used by the browser clients
UPLOAD_FIELDS = ("userFile", "file")

# Room for multipart boundaries, part headers and small form fields
MULTIPART_ALLOWANCE = 16 * 1024


class FileUploadEndpoint(Endpoint):
    def _invoke(self, r: Request, values: Mapping, settings: Mapping) -> Response:
        return handle_errors(lambda: self._upload(r))

    def _upload(self, r: Request) -> Response:
        service = runtime.get_service()
        store_settings = runtime.get_settings()

        # Must run before anything touches r.form, r.values, r.files or r.stream
        body_limit = service.max_file_size + MULTIPART_ALLOWANCE
        if r.content_length is not None and r.content_length > body_limit:
            raise SizeExceeded()
        r.max_content_length = body_limit

        try:
            policy = ConsumptionPolicy.parse(
                r.values.get("policy"), default=service.policy
            )
        except ValueError as e:
            return error_response(str(e), 400)

        upload = next((r.files[f] for f in UPLOAD_FIELDS if f in r.files), None)
        if upload is not None:
            stream = upload.stream
            filename = upload.filename
            mime_type = upload.mimetype
        else:
            if not r.content_length and not r.headers.get("Transfer-Encoding"):
                return error_response("No file uploaded.", 400)
            if r.content_length and r.content_length > service.max_file_size:
                raise SizeExceeded()
            stream = r.stream
            filename = r.headers.get("X-File-Name") or r.args.get("filename")
            mime_type = r.mimetype

        if not filename:
            return error_response("No file uploaded.", 400)

        record = service.create(stream, filename, mime_type, policy=policy)
        body = {
            "id": record.id,
            "downloadUrl": download_url(r, record.id, store_settings.public_base_url),
            "expiresAt": int(record.expires_at * 1000),
            "size": record.size_bytes,
            "originalName": record.original_name,
            "mimeType": record.mime_type,
            "policy": record.policy.value,
        }
        return json_response(body)
