"""upload_to_r2 tool: publish a generated file to Cloudflare R2.

R2 speaks the S3 API, so uploads go through an aioboto3 S3 client pointed
at the account endpoint. The returned link is public when R2_PUBLIC_URL is
configured, otherwise a presigned GET URL.
"""

from __future__ import annotations

import json
import logging
import secrets
from typing import Any

import aioboto3

from quarry.api.tools import ToolDispatcher
from quarry.config import Settings

logger = logging.getLogger(__name__)


def build_object_key(prefix: str, filename: str) -> str:
    """Random, collision-free key that keeps the original filename readable."""
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    key = f"{secrets.token_hex(16)}_{name}"
    return f"{prefix.strip('/')}/{key}" if prefix.strip("/") else key


async def upload_to_r2(
    filename: str = "",
    content: str = "",
    contentType: str = "text/plain",
    *,
    _settings: Settings,
    _session: aioboto3.Session,
) -> dict[str, Any]:
    """Upload text content and return a download URL."""
    if not filename:
        return {"success": False, "error": "Missing required parameter: filename"}
    if content is None:
        return {"success": False, "error": "Missing required parameter: content"}
    if not isinstance(content, str):
        content = json.dumps(content, ensure_ascii=False, default=str)

    body = content.encode("utf-8")
    key = build_object_key(_settings.r2_key_prefix, filename)
    try:
        async with _session.client(
            "s3",
            endpoint_url=_settings.r2_endpoint_url,
            region_name="auto",
        ) as s3:
            await s3.put_object(
                Bucket=_settings.r2_bucket_name,
                Key=key,
                Body=body,
                ContentType=contentType or "text/plain",
            )
            if _settings.r2_public_url:
                download_url = f"{_settings.r2_public_url.rstrip('/')}/{key}"
            else:
                download_url = await s3.generate_presigned_url(
                    "get_object",
                    Params={"Bucket": _settings.r2_bucket_name, "Key": key},
                    ExpiresIn=_settings.r2_url_expiry,
                )
    except Exception as e:
        logger.warning("R2 upload failed for %s: %s", key, e)
        return {"success": False, "error": str(e)}

    logger.info("Uploaded %s (%d bytes)", key, len(body))
    return {"success": True, "downloadUrl": download_url, "size": len(body)}


_UPLOAD_TO_R2_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": "Upload data to Cloudflare R2 and return a download URL.",
    "properties": {
        "filename": {
            "type": "string",
            "description": "File name to upload (e.g. report.json, data.csv)",
        },
        "content": {"type": "string", "description": "File content"},
        "contentType": {
            "type": "string",
            "description": "MIME type (e.g. application/json, text/csv)",
            "default": "text/plain",
        },
    },
    "required": ["filename", "content"],
}


def register_r2_tools(
    dispatcher: ToolDispatcher,
    settings: Settings,
    session: aioboto3.Session | None = None,
) -> None:
    """Register upload_to_r2 with the dispatcher.

    One aioboto3 session is shared; each upload opens a short-lived client.
    """
    session = session or aioboto3.Session(
        aws_access_key_id=settings.r2_access_key_id,
        aws_secret_access_key=settings.r2_secret_access_key,
    )

    async def _upload(filename: str = "", content: str = "", contentType: str = "text/plain") -> dict[str, Any]:
        return await upload_to_r2(
            filename, content, contentType, _settings=settings, _session=session
        )

    dispatcher.register(
        "upload_to_r2",
        _upload,
        _UPLOAD_TO_R2_SCHEMA,
        status=lambda args: f"\U0001f4e4 **Uploading to R2**: {args.get('filename', '')}",
    )
