from collections.abc import Mapping

from werkzeug import Request, Response

from dify_plugin import Endpoint

from endpoints._responses import error_response, handle_errors, json_response
from store import runtime
from store.ids import is_valid_id


class FileDeleteEndpoint(Endpoint):
    def _invoke(self, r: Request, values: Mapping, settings: Mapping) -> Response:
        file_id = values.get("file_id", "")
        if not is_valid_id(file_id):
            return error_response("File not found or has been deleted.", 404)

        def _delete() -> Response:
            runtime.get_service().delete(file_id)
            return json_response({"id": file_id, "deleted": True})

        return handle_errors(_delete)
