"""Tests for the cloud vision provider using a mocked HTTP transport."""

import base64
import json
import os

import httpx
import pytest

from bills_ai.core.ai.base import Backend, DocumentType, ProviderState
from bills_ai.core.ai.exceptions import (
    CredentialMissingError,
    DocumentNotAccessibleError,
    FileTooLargeError,
    GenerationTimeoutError,
    ProviderRequestError,
    TextExtractionUnsupportedError,
)
from bills_ai.core.ai.providers.openai import CLOUD_CONFIDENCE, METHOD_VISION, OpenAIVisionProvider
from bills_ai.core.errors import ErrorCode


def _completion(content, refusal=None):
    message = {"role": "assistant", "content": content}
    if refusal is not None:
        message["refusal"] = refusal
    return {"choices": [{"index": 0, "message": message}]}


class Recorder:
    def __init__(self, responder):
        self.responder = responder
        self.requests = []

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        return self.responder(request)


def _provider(responder, api_key="sk-test", **kwargs):
    recorder = Recorder(responder)
    provider = OpenAIVisionProvider(
        api_key=api_key,
        base_url="https://api.example.test/v1",
        transport=httpx.MockTransport(recorder),
        **kwargs,
    )
    return provider, recorder


@pytest.fixture
def receipt_jpg(tmp_path):
    path = tmp_path / "receipt.jpg"
    path.write_bytes(b"\xff\xd8\xff\xe0" + b"\x01" * 32)
    return str(path)


@pytest.fixture
def invoice_pdf(tmp_path):
    path = tmp_path / "invoice.pdf"
    path.write_bytes(b"%PDF-1.4 invoice")
    return str(path)


@pytest.mark.asyncio
async def test_analyze_image_success(receipt_jpg, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    content = json.dumps(
        {"vendor": "Cafe", "category": "Meals", "date": "2024-05-02", "amount": "8.50", "notes": None}
    )
    provider, recorder = _provider(lambda r: httpx.Response(200, json=_completion(content)))

    result = await provider.analyze_document(receipt_jpg, DocumentType.EXPENSE)

    assert result.backend == Backend.OPENAI
    assert result.method == METHOD_VISION
    assert result.confidence == CLOUD_CONFIDENCE
    assert result.fields == {"vendor": "Cafe", "category": "Meals", "date": "2024-05-02", "amount": "8.50"}

    request = recorder.requests[0]
    assert str(request.url) == "https://api.example.test/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    body = json.loads(request.content)
    attachment = body["messages"][0]["content"][1]
    assert attachment["type"] == "image_url"
    assert attachment["image_url"]["url"].startswith("data:image/jpeg;base64,")
    schema = body["response_format"]["json_schema"]
    assert schema["strict"] is True
    assert schema["schema"]["additionalProperties"] is False
    # credential never leaks into the process environment
    assert "OPENAI_API_KEY" not in os.environ


@pytest.mark.asyncio
async def test_pdf_sent_as_file_part(invoice_pdf):
    content = json.dumps({"clientName": "Globex", "amount": "120.00", "currency": "EUR"})
    provider, recorder = _provider(lambda r: httpx.Response(200, json=_completion(content)))

    result = await provider.analyze_document(invoice_pdf, DocumentType.BILL)

    assert result.fields["clientName"] == "Globex"
    attachment = json.loads(recorder.requests[0].content)["messages"][0]["content"][1]
    assert attachment["type"] == "file"
    assert attachment["file"]["filename"] == "invoice.pdf"
    data_url = attachment["file"]["file_data"]
    assert data_url.startswith("data:application/pdf;base64,")
    assert base64.b64decode(data_url.split(",", 1)[1]) == b"%PDF-1.4 invoice"


@pytest.mark.asyncio
async def test_oversized_file_rejected_before_request(tmp_path):
    big = tmp_path / "scan.pdf"
    with open(big, "wb") as f:
        f.truncate(25 * 1024 * 1024)
    provider, recorder = _provider(lambda r: httpx.Response(200, json=_completion("{}")))

    with pytest.raises(FileTooLargeError) as exc_info:
        await provider.analyze_document(str(big), DocumentType.BILL)

    assert exc_info.value.message == "File is too large (max 20MB)"
    assert exc_info.value.code == ErrorCode.FILE_TOO_LARGE
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_missing_file(tmp_path):
    provider, recorder = _provider(lambda r: httpx.Response(200, json=_completion("{}")))
    with pytest.raises(DocumentNotAccessibleError):
        await provider.analyze_document(str(tmp_path / "gone.png"), DocumentType.EXPENSE)
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_missing_credential(receipt_jpg):
    provider, recorder = _provider(lambda r: httpx.Response(200), api_key=None)

    assert provider.get_status().status == ProviderState.stopped
    with pytest.raises(CredentialMissingError):
        await provider.initialize()
    with pytest.raises(CredentialMissingError):
        await provider.analyze_document(receipt_jpg, DocumentType.EXPENSE)
    assert recorder.requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,code",
    [
        (401, ErrorCode.AUTH_FAILED),
        (403, ErrorCode.AUTH_FAILED),
        (429, ErrorCode.QUOTA_EXCEEDED),
        (500, ErrorCode.EXTERNAL_SERVICE_ERROR),
    ],
)
async def test_http_error_mapping(receipt_jpg, status, code):
    provider, _ = _provider(lambda r: httpx.Response(status, json={"error": {"message": "nope"}}))

    with pytest.raises(ProviderRequestError) as exc_info:
        await provider.analyze_document(receipt_jpg, DocumentType.EXPENSE)

    assert exc_info.value.code == code
    assert exc_info.value.status_code == status


@pytest.mark.asyncio
async def test_timeout_maps_to_generation_timeout(receipt_jpg):
    def raise_timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    provider, _ = _provider(raise_timeout)
    with pytest.raises(GenerationTimeoutError):
        await provider.analyze_document(receipt_jpg, DocumentType.EXPENSE)


@pytest.mark.asyncio
async def test_network_error(receipt_jpg):
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    provider, _ = _provider(refuse)
    with pytest.raises(ProviderRequestError) as exc_info:
        await provider.analyze_document(receipt_jpg, DocumentType.EXPENSE)
    assert exc_info.value.code == ErrorCode.NETWORK_ERROR


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        _completion('{"vendor": "x", "unexpected": "y"}'),
        _completion("not json"),
        _completion(None, refusal="I can't help with that"),
        {"choices": []},
    ],
)
async def test_malformed_responses_raise(receipt_jpg, payload):
    provider, _ = _provider(lambda r: httpx.Response(200, json=payload))
    with pytest.raises(ProviderRequestError):
        await provider.analyze_document(receipt_jpg, DocumentType.EXPENSE)


@pytest.mark.asyncio
async def test_extract_text_not_supported(invoice_pdf):
    provider, _ = _provider(lambda r: httpx.Response(200))
    with pytest.raises(TextExtractionUnsupportedError) as exc_info:
        await provider.extract_text(invoice_pdf)
    assert exc_info.value.code == ErrorCode.NOT_SUPPORTED


@pytest.mark.asyncio
async def test_status_follows_credential():
    provider, _ = _provider(lambda r: httpx.Response(200), api_key=None)
    assert not provider.is_ready()

    provider.set_api_key("sk-live")
    await provider.initialize()
    assert provider.is_ready()
    assert provider.get_status().status == ProviderState.running

    provider.set_api_key("")
    assert not provider.has_credential
    assert provider.get_status().status == ProviderState.stopped
    await provider.cleanup()


@pytest.mark.asyncio
async def test_file_read_does_not_block_event_loop(invoice_pdf, slow_read_bytes, loop_ticks):
    content = json.dumps({"clientName": "Globex"})
    provider, _ = _provider(lambda r: httpx.Response(200, json=_completion(content)))

    ticks, result = await loop_ticks(provider.analyze_document(invoice_pdf, DocumentType.BILL))

    assert result.fields == {"clientName": "Globex"}
    assert ticks >= 5
