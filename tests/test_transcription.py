import json

import httpx
import pytest

from notepipe.errors import TranscriptionServiceError
from notepipe.services.transcription import AssemblyAIClient


def _client(handler):
    return AssemblyAIClient("aai-test", transport=httpx.MockTransport(handler))


def test_submit_registers_webhook():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "tx-42", "status": "queued"})

    tid = _client(handler).submit(
        "https://storage.example.com/a.m4a", "https://hooks.example.com/v1/webhooks/assemblyai", "s3cret"
    )
    assert tid == "tx-42"
    assert seen["path"] == "/v2/transcript"
    assert seen["auth"] == "aai-test"
    body = seen["body"]
    assert body["audio_url"] == "https://storage.example.com/a.m4a"
    assert body["webhook_url"] == "https://hooks.example.com/v1/webhooks/assemblyai"
    assert body["webhook_auth_header_name"] == "x-webhook-secret"
    assert body["webhook_auth_header_value"] == "s3cret"
    assert body["speaker_labels"] is True


def test_submit_without_id_is_an_error():
    client = _client(lambda request: httpx.Response(200, json={"status": "queued"}))
    with pytest.raises(TranscriptionServiceError):
        client.submit("https://a", "https://b", "s")


def test_http_error_is_wrapped():
    client = _client(lambda request: httpx.Response(500, text="upstream down"))
    with pytest.raises(TranscriptionServiceError, match="500 upstream down"):
        client.fetch_result("tx-1")


def test_fetch_result_and_utterances():
    def handler(request):
        if request.url.path.endswith("/utterances"):
            return httpx.Response(200, json={"utterances": [
                {"speaker": "A", "start": 0, "end": 1200, "text": "Hello", "confidence": 0.9, "words": []},
            ]})
        return httpx.Response(200, json={"id": "tx-1", "text": "Hello", "words": [{"text": "Hello"}],
                                         "confidence": 0.88})

    client = _client(handler)
    result = client.fetch_result("tx-1")
    assert result.text == "Hello"
    assert result.words == [{"text": "Hello"}]
    assert result.confidence == 0.88
    assert client.fetch_utterances("tx-1") == [{"speaker": "A", "start": 0, "end": 1200, "text": "Hello"}]


def test_missing_key():
    with pytest.raises(RuntimeError):
        AssemblyAIClient("")
