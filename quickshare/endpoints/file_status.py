# File status endpoint
# Read-only metadata lookup; does not consume single-use objects

from collections.abc import Mapping

from werkzeug import Request, Response

from dify_plugin import Endpoint

from endpoints._responses import error_response, handle_errors, json_response
from store import runtime
from store.ids import is_valid_id


class FileStatusEndpoint(Endpoint):
    def _invoke(self, r: Request, values: Mapping, settings: Mapping) -> Response:
        file_id = values.get("file_id", "")
        if not is_valid_id(file_id):
            return error_response("File not found or has been deleted.", 404)
        return handle_errors(
            lambda: json_response(runtime.get_service().status(file_id).to_dict())
        )
