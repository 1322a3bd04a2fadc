"""Tests for upload_to_r2 with a mocked aioboto3 session."""

import json
import re
from unittest.mock import AsyncMock, MagicMock

import pytest

from fakes import make_settings
from quarry.api.models import ToolUseBlock
from quarry.api.r2_tools import build_object_key, register_r2_tools, upload_to_r2


def _session(put_error: Exception | None = None):
    s3 = MagicMock()
    s3.put_object = AsyncMock(side_effect=put_error)
    s3.generate_presigned_url = AsyncMock(return_value="https://signed.example/obj")
    client = MagicMock()
    client.__aenter__ = AsyncMock(return_value=s3)
    client.__aexit__ = AsyncMock(return_value=False)
    session = MagicMock()
    session.client.return_value = client
    return session, s3


class TestBuildObjectKey:
    def test_prefix_and_random_token(self):
        key = build_object_key("quarry", "report.csv")
        assert re.fullmatch(r"quarry/[0-9a-f]{32}_report\.csv", key)

    def test_directories_stripped(self):
        assert build_object_key("quarry", "../../etc/passwd").endswith("_passwd")

    def test_no_prefix(self):
        assert re.fullmatch(r"[0-9a-f]{32}_a\.txt", build_object_key("", "a.txt"))

    def test_keys_are_unique(self):
        assert build_object_key("p", "a.txt") != build_object_key("p", "a.txt")


class TestUploadToR2:
    @pytest.mark.asyncio
    async def test_presigned_url(self):
        settings = make_settings()
        session, s3 = _session()

        result = await upload_to_r2(
            "data.csv", "a,b\n1,2\n", "text/csv", _settings=settings, _session=session
        )

        assert result == {"success": True, "downloadUrl": "https://signed.example/obj", "size": 8}
        session.client.assert_called_once_with(
            "s3", endpoint_url="https://acct.r2.cloudflarestorage.com", region_name="auto"
        )
        put = s3.put_object.await_args.kwargs
        assert put["Bucket"] == "bucket"
        assert put["Body"] == b"a,b\n1,2\n"
        assert put["ContentType"] == "text/csv"
        assert put["Key"].startswith("quarry/")
        presign = s3.generate_presigned_url.await_args
        assert presign.kwargs["ExpiresIn"] == 604800
        assert presign.kwargs["Params"]["Key"] == put["Key"]

    @pytest.mark.asyncio
    async def test_public_url(self):
        settings = make_settings(r2_public_url="https://files.example.com/")
        session, s3 = _session()

        result = await upload_to_r2("a.json", "{}", _settings=settings, _session=session)

        key = s3.put_object.await_args.kwargs["Key"]
        assert result["downloadUrl"] == f"https://files.example.com/{key}"
        s3.generate_presigned_url.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_text_content_serialized(self):
        session, s3 = _session()
        await upload_to_r2("a.json", {"rows": [1]}, "application/json", _settings=make_settings(), _session=session)
        assert json.loads(s3.put_object.await_args.kwargs["Body"]) == {"rows": [1]}

    @pytest.mark.asyncio
    async def test_utf8_size(self):
        session, _ = _session()
        result = await upload_to_r2("a.txt", "한글", _settings=make_settings(), _session=session)
        assert result["size"] == 6

    @pytest.mark.asyncio
    async def test_missing_filename(self):
        session, s3 = _session()
        result = await upload_to_r2("", "x", _settings=make_settings(), _session=session)
        assert result["success"] is False
        s3.put_object.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_upload_error(self):
        session, _ = _session(put_error=RuntimeError("AccessDenied"))
        result = await upload_to_r2("a.txt", "x", _settings=make_settings(), _session=session)
        assert result == {"success": False, "error": "AccessDenied"}


class TestRegistration:
    @pytest.mark.asyncio
    async def test_dispatch(self, dispatcher):
        session, _ = _session()
        register_r2_tools(dispatcher, make_settings(), session=session)

        outcome = await dispatcher.dispatch(
            ToolUseBlock(id="t1", name="upload_to_r2", input={"filename": "a.csv", "content": "x"})
        )

        assert outcome.ok
        assert outcome.payload["downloadUrl"] == "https://signed.example/obj"
        status = dispatcher.status_line(ToolUseBlock(id="t1", name="upload_to_r2", input={"filename": "a.csv"}))
        assert "a.csv" in status
