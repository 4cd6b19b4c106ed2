# ファイル共有ツール
# 受け取ったファイルを一時ストアに保存し、期限付きのダウンロードURLを返す

import io
from collections.abc import Generator
from typing import Any

from dify_plugin import Tool
from dify_plugin.entities.tool import ToolInvokeMessage

from store import runtime
from store.errors import StoreError
from store.models import ConsumptionPolicy


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


class ShareFileTool(Tool):
    def _invoke(self, tool_parameters: dict[str, Any]) -> Generator[ToolInvokeMessage]:
        file = tool_parameters.get("file")
        single_use = tool_parameters.get("single_use")

        if not file:
            yield self.create_json_message({"error": "file is required"})
            return

        service = runtime.get_service()
        base_url = runtime.get_settings().public_base_url
        policy = ConsumptionPolicy.SINGLE_USE if _to_bool(single_use) else service.policy

        filename = getattr(file, "filename", None) or "file"
        mime_type = getattr(file, "mime_type", None) or ""

        try:
            record = service.create(
                io.BytesIO(file.blob), filename, mime_type, policy=policy
            )
        except StoreError as e:
            yield self.create_json_message({"error": e.message})
            return

        path = f"/download/{record.id}"
        url = f"{base_url}{path}" if base_url else path

        yield self.create_json_message(
            {
                "id": record.id,
                "download_url": url,
                "expires_at": int(record.expires_at * 1000),
                "size": record.size_bytes,
                "original_name": record.original_name,
                "policy": record.policy.value,
            }
        )

        note = "（1回ダウンロードすると削除されます）" if record.policy is ConsumptionPolicy.SINGLE_USE else ""
        minutes = max(1, round(service.ttl_seconds / 60))
        yield self.create_text_message(
            f"[📎 {record.original_name}]({url})\n\n"
            f"リンクの有効期限は約{minutes}分です{note}。"
        )
