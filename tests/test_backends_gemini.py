from unittest.mock import patch

import pytest
import requests

from backends import (
    BackendConnectionError,
    BackendTimeoutError,
    ChatMessage,
    CredentialRequiredError,
    GenerationError,
    GenerationOptions,
    InvalidCredentialError,
    Provider,
    Role,
)
from backends_gemini import GeminiClient, extract_text
from conftest import VALID_KEY, fake_response


def candidate(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


@pytest.fixture
def client(cloud_store):
    return GeminiClient(cloud_store)


class TestExtractText:
    def test_first_candidate(self):
        data = {"candidates": [
            {"content": {"parts": [{"text": "first"}, {"text": "ignored"}]}},
            {"content": {"parts": [{"text": "second"}]}},
        ]}
        assert extract_text(data) == "first"

    @pytest.mark.parametrize("data", [
        {},
        {"candidates": []},
        {"candidates": [{"content": {}}]},
        {"candidates": [{"content": {"parts": []}}]},
        {"candidates": ["x"]},
        {"candidates": "x"},
        {"promptFeedback": "blocked"},
        None,
    ])
    def test_missing_structure(self, data):
        with pytest.raises(GenerationError):
            extract_text(data)

    def test_filtered_content_reports_reason(self):
        with pytest.raises(GenerationError, match="SAFETY"):
            extract_text({"promptFeedback": {"blockReason": "SAFETY"}})

    def test_text_containing_error_words_is_still_text(self):
        assert extract_text(candidate("Invalid input handling: API error codes")) == \
            "Invalid input handling: API error codes"


class TestComplete:
    def test_request_shape(self, client):
        with patch("backends_gemini.requests.post", return_value=fake_response(200, candidate("hi"))) as post:
            assert client.complete("Human: hi", VALID_KEY, GenerationOptions()) == "hi"
        assert post.call_args.args[0] == (
            "https://generativelanguage.googleapis.com/v1beta/models/gemini-1.5-flash:generateContent"
        )
        assert post.call_args.kwargs["params"] == {"key": VALID_KEY}
        assert post.call_args.kwargs["json"] == {
            "contents": [{"parts": [{"text": "Human: hi"}]}],
            "generationConfig": {"temperature": 0.7, "maxOutputTokens": 4096},
        }
        assert post.call_args.kwargs["timeout"] == 30

    def test_generation_options_are_forwarded(self, client):
        with patch("backends_gemini.requests.post", return_value=fake_response(200, candidate("hi"))) as post:
            client.complete("p", VALID_KEY, GenerationOptions(model="gemini-pro", temperature=0.2, max_tokens=10))
        assert "/gemini-pro:generateContent" in post.call_args.args[0]
        assert post.call_args.kwargs["json"]["generationConfig"] == {"temperature": 0.2, "maxOutputTokens": 10}

    def test_requires_credential(self, client):
        with patch("backends_gemini.requests.post") as post:
            with pytest.raises(CredentialRequiredError):
                client.complete("p", "", GenerationOptions())
        post.assert_not_called()

    @pytest.mark.parametrize("status", [400, 401])
    def test_rejected_key_is_cleared(self, client, cloud_store, status):
        body = {"error": {"code": status, "message": "API key not valid. Please pass a valid API key."}}
        with patch("backends_gemini.requests.post", return_value=fake_response(status, body)):
            with pytest.raises(InvalidCredentialError, match="API key not valid"):
                client.complete("p", VALID_KEY, GenerationOptions())
        assert not cloud_store.get().cloud_api_key

    def test_rejection_does_not_clear_a_newer_key(self, client, cloud_store):
        cloud_store.update(cloud_api_key="AIzaSyNEWER-key-0123456789")
        with patch("backends_gemini.requests.post", return_value=fake_response(401, {})):
            with pytest.raises(InvalidCredentialError):
                client.complete("p", VALID_KEY, GenerationOptions())
        assert cloud_store.get().cloud_api_key == "AIzaSyNEWER-key-0123456789"

    def test_other_client_error(self, client, cloud_store):
        body = {"error": {"message": "models/foo is not found"}}
        with patch("backends_gemini.requests.post", return_value=fake_response(404, body)):
            with pytest.raises(GenerationError, match="not found"):
                client.complete("p", VALID_KEY, GenerationOptions())
        assert cloud_store.get().cloud_api_key == VALID_KEY

    @pytest.mark.parametrize("status", [429, 503])
    def test_unavailable(self, client, status):
        with patch("backends_gemini.requests.post", return_value=fake_response(status, {})):
            with pytest.raises(BackendConnectionError):
                client.complete("p", VALID_KEY, GenerationOptions())

    def test_network_failure(self, client):
        with patch("backends_gemini.requests.post", side_effect=requests.exceptions.ConnectionError(
                "https://x/?key=" + VALID_KEY)):
            with pytest.raises(BackendConnectionError) as excinfo:
                client.complete("p", VALID_KEY, GenerationOptions())
        assert VALID_KEY not in str(excinfo.value)
        assert excinfo.value.__cause__ is None

    def test_timeout(self, client):
        with patch("backends_gemini.requests.post", side_effect=requests.exceptions.ReadTimeout()):
            with pytest.raises(BackendTimeoutError):
                client.complete("p", VALID_KEY, GenerationOptions())

    def test_malformed_json(self, client):
        with patch("backends_gemini.requests.post", return_value=fake_response(200, text="<html>")):
            with pytest.raises(GenerationError):
                client.complete("p", VALID_KEY, GenerationOptions())


class TestChat:
    def test_uses_stored_key_and_linear_prompt(self, client):
        messages = [ChatMessage(Role.SYSTEM, "a"), ChatMessage(Role.USER, "b")]
        with patch("backends_gemini.requests.post", return_value=fake_response(200, candidate("ok"))) as post:
            result = client.chat(messages, GenerationOptions())
        assert result.text == "ok"
        assert result.provider is Provider.CLOUD
        assert result.model == "gemini-1.5-flash"
        assert post.call_args.kwargs["params"] == {"key": VALID_KEY}
        assert post.call_args.kwargs["json"]["contents"][0]["parts"][0]["text"] == "System: a\n\nHuman: b"
