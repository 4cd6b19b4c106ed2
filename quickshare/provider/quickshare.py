from typing import Any

from dify_plugin import ToolProvider
from dify_plugin.errors.tool import ToolProviderCredentialValidationError

from store.config import StoreSettings


class QuickShareProvider(ToolProvider):
    def _validate_credentials(self, credentials: dict[str, Any]) -> None:
        # No credentials required; only make sure the store can be configured
        try:
            StoreSettings.from_env()
        except ValueError as e:
            raise ToolProviderCredentialValidationError(f"Invalid QuickShare settings: {e}") from e
