"""
Test suite for the Ollama client

This module tests:
- Parsing of streamed newline-delimited JSON
- Error translation to ProviderUnavailableError
- Model administration endpoints
"""

import json
from unittest.mock import Mock

import pytest
import requests

from rag_assistant.exceptions import GenerationTimeoutError, ProviderUnavailableError
from rag_assistant.ollama_client import OllamaClient


def make_response(status_code=200, lines=(), payload=None, text=""):
    response = Mock()
    response.status_code = status_code
    response.text = text
    response.iter_lines.return_value = iter(lines)
    response.json.return_value = payload if payload is not None else {}
    return response


@pytest.fixture
def session():
    session = Mock(spec=requests.Session)
    session.headers = {}
    return session


@pytest.fixture
def client(session):
    return OllamaClient("http://ollama:11434/", "llama3", session=session)


class TestStreaming:
    """Test cases for streamed generation"""

    def test_stream_generate_yields_fragments(self, client, session):
        lines = [
            json.dumps({"response": "Hel", "done": False}),
            "",
            json.dumps({"response": "lo", "done": False}),
            json.dumps({"response": "", "done": True}),
            json.dumps({"response": "ignored"}),
        ]
        session.request.return_value = make_response(lines=lines)

        tokens = list(client.stream_generate("Say hello"))

        assert tokens == ["Hel", "lo"]
        method, url = session.request.call_args[0]
        assert (method, url) == ("POST", "http://ollama:11434/api/generate")
        payload = session.request.call_args[1]["json"]
        assert payload == {"model": "llama3", "prompt": "Say hello", "stream": True}
        assert session.request.call_args[1]["stream"] is True
        session.request.return_value.close.assert_called_once()

    def test_stream_chat_reads_message_content(self, client, session):
        lines = [
            json.dumps({"message": {"role": "assistant", "content": "Hi"}, "done": False}),
            json.dumps({"message": {"role": "assistant", "content": "!"}, "done": True}),
        ]
        session.request.return_value = make_response(lines=lines)
        messages = [{"role": "user", "content": "hello"}]

        assert client.chat(messages) == "Hi!"
        assert session.request.call_args[0][1].endswith("/api/chat")
        assert session.request.call_args[1]["json"]["messages"] == messages

    def test_unparseable_lines_are_skipped(self, client, session):
        lines = ["not json", json.dumps({"response": "ok", "done": True})]
        session.request.return_value = make_response(lines=lines)
        assert client.generate("q") == "ok"

    def test_error_fragment_raises(self, client, session):
        lines = [json.dumps({"response": "par"}), json.dumps({"error": "model crashed"})]
        session.request.return_value = make_response(lines=lines)

        stream = client.stream_generate("q")
        assert next(stream) == "par"
        with pytest.raises(ProviderUnavailableError, match="model crashed"):
            next(stream)

    def test_options_forwarded(self, client, session):
        session.request.return_value = make_response(lines=[json.dumps({"done": True})])
        list(client.stream_generate("q", temperature=0.2))
        assert session.request.call_args[1]["json"]["options"] == {"temperature": 0.2}

    def test_read_error_mid_stream(self, client, session):
        def broken_lines(**kwargs):
            yield json.dumps({"response": "a"})
            raise requests.ConnectionError("reset by peer")

        response = make_response()
        response.iter_lines.side_effect = broken_lines
        session.request.return_value = response

        with pytest.raises(ProviderUnavailableError, match="reset by peer"):
            list(client.stream_generate("q"))
        response.close.assert_called_once()

    def test_stalled_stream_raises_timeout(self, client, session):
        def stalled_lines(**kwargs):
            yield json.dumps({"response": "Partial"})
            raise requests.ConnectionError("HTTPConnectionPool(host='ollama', port=11434): Read timed out.")

        response = make_response()
        response.iter_lines.side_effect = stalled_lines
        session.request.return_value = response

        stream = client.stream_generate("q", read_timeout=12.0)
        assert next(stream) == "Partial"
        with pytest.raises(GenerationTimeoutError):
            next(stream)
        assert session.request.call_args[1]["timeout"] == (30.0, 12.0)
        assert "options" not in session.request.call_args[1]["json"]

    def test_no_first_byte_raises_timeout(self, client, session):
        session.request.side_effect = requests.ReadTimeout("read timeout=300")
        with pytest.raises(GenerationTimeoutError):
            list(client.stream_chat([{"role": "user", "content": "hi"}]))


class TestErrors:

    def test_connection_error(self, client, session):
        session.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(ProviderUnavailableError) as exc_info:
            list(client.stream_generate("q"))
        assert exc_info.value.provider == "ollama"

    def test_http_error_status(self, client, session):
        session.request.return_value = make_response(status_code=404, text="model not found")
        with pytest.raises(ProviderUnavailableError) as exc_info:
            list(client.stream_generate("q"))
        assert exc_info.value.status_code == 404
        assert "model not found" in str(exc_info.value)

    def test_is_available(self, client, session):
        session.request.return_value = make_response(payload={"models": []})
        assert client.is_available() is True

        session.request.side_effect = requests.Timeout("slow")
        assert client.is_available() is False


class TestAdministration:
    """Test cases for the model management endpoints"""

    def test_list_models(self, client, session):
        session.request.return_value = make_response(
            payload={"models": [{"name": "llama3:8b"}, {"name": "all-minilm:22m"}, {}]})
        assert client.list_models() == ["llama3:8b", "all-minilm:22m"]
        assert session.request.call_args[0] == ("GET", "http://ollama:11434/api/tags")

    def test_pull_model(self, client, session):
        session.request.return_value = make_response(payload={"status": "success"})
        assert client.pull_model("llama3") is True
        assert session.request.call_args[1]["json"] == {"model": "llama3", "stream": False}

    def test_delete_model(self, client, session):
        session.request.return_value = make_response()
        assert client.delete_model("llama3") is True
        assert session.request.call_args[0][0] == "DELETE"

    def test_copy_model(self, client, session):
        session.request.return_value = make_response()
        assert client.copy_model("llama3", "llama3-backup") is True
        assert session.request.call_args[1]["json"] == {"source": "llama3", "destination": "llama3-backup"}

    def test_get_model_info(self, client, session):
        session.request.return_value = make_response(payload={"details": {"family": "llama"}})
        assert client.get_model_info("llama3")["details"]["family"] == "llama"

    def test_close(self, client, session):
        client.close()
        session.close.assert_called_once()
