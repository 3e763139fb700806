"""
Ollama generation client.

Thin HTTP client for Ollama's REST API covering streaming text generation
(``/api/generate`` and ``/api/chat``) and the model administration endpoints
(``/api/tags``, ``/api/pull``, ``/api/delete``, ``/api/copy``, ``/api/show``).
"""

import json
import logging
from typing import Any, Dict, Iterator, List, Optional

import requests

from .exceptions import GenerationTimeoutError, ProviderUnavailableError

logger = logging.getLogger(__name__)

PROVIDER = "ollama"


def is_read_timeout(error: requests.RequestException) -> bool:
    # requests re-raises a read timeout hit while iterating a body as ConnectionError
    if isinstance(error, requests.ReadTimeout):
        return True
    return isinstance(error, requests.ConnectionError) and "read timed out" in str(error).lower()


class OllamaClient:
    """
    HTTP client for an Ollama server.

    Streaming calls yield text fragments in arrival order. Every transport or
    HTTP failure is raised as ProviderUnavailableError.

    Example:
        >>> client = OllamaClient("http://localhost:11434", "llama3.2")
        >>> for token in client.stream_generate("What is 2+2?"):
        ...     print(token, end="")
    """

    def __init__(self, base_url: str = "http://localhost:11434", model: str = "deepseek-coder-v2:16b",
                 connect_timeout: float = 30.0, read_timeout: float = 300.0,
                 session: Optional[requests.Session] = None):
        """
        Initialize the Ollama client.

        Args:
            base_url: Server address
            model: Model used for generation
            connect_timeout: Seconds to wait for a connection
            read_timeout: Seconds to wait between bytes of a response
            session: Optional pre-configured requests session
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

        logger.debug(f"Initialized OllamaClient: base_url={self.base_url}, model={self.model}")

    @property
    def timeout(self):
        return (self.connect_timeout, self.read_timeout)

    # Generation

    def stream_generate(self, prompt: str, read_timeout: Optional[float] = None, **options) -> Iterator[str]:
        """
        Stream a completion for a flat prompt from ``/api/generate``.

        ``read_timeout`` overrides the client's wait between bytes for this
        call only; running out of it raises GenerationTimeoutError.
        """
        payload = {"model": self.model, "prompt": prompt, "stream": True}
        if options:
            payload["options"] = options
        return self._stream("/api/generate", payload, is_chat=False, read_timeout=read_timeout)

    def stream_chat(self, messages: List[Dict[str, str]], read_timeout: Optional[float] = None,
                    **options) -> Iterator[str]:
        """Stream a reply to role-tagged ``messages`` from ``/api/chat``."""
        payload = {"model": self.model, "messages": messages, "stream": True}
        if options:
            payload["options"] = options
        return self._stream("/api/chat", payload, is_chat=True, read_timeout=read_timeout)

    def generate(self, prompt: str, **options) -> str:
        return "".join(self.stream_generate(prompt, **options))

    def chat(self, messages: List[Dict[str, str]], **options) -> str:
        return "".join(self.stream_chat(messages, **options))

    def _stream(self, path: str, payload: Dict[str, Any], is_chat: bool,
                read_timeout: Optional[float] = None) -> Iterator[str]:
        url = f"{self.base_url}{path}"
        logger.debug(f"Streaming request to {url} with model {self.model}")
        timeout = (self.connect_timeout, read_timeout or self.read_timeout)
        response = self._request("POST", path, timeout=timeout, json=payload, stream=True)
        try:
            for line in response.iter_lines(decode_unicode=True):
                if not line:
                    continue
                try:
                    fragment = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping unparseable stream line: {line[:120]}")
                    continue

                if fragment.get("error"):
                    raise ProviderUnavailableError(str(fragment["error"]), provider=PROVIDER)

                if is_chat:
                    token = (fragment.get("message") or {}).get("content", "")
                else:
                    token = fragment.get("response", "")
                if token:
                    yield token
                if fragment.get("done"):
                    break
        except requests.RequestException as e:
            if is_read_timeout(e):
                raise GenerationTimeoutError(f"No data from {url} within {timeout[1]}s",
                                             provider=PROVIDER) from e
            raise ProviderUnavailableError(f"Stream from {url} failed: {e}", provider=PROVIDER) from e
        finally:
            response.close()

    # Administration

    def list_models(self) -> List[str]:
        """Names of the models installed on the server."""
        data = self._request("GET", "/api/tags").json()
        return [model.get("name", "") for model in data.get("models", []) if model.get("name")]

    def pull_model(self, name: str) -> bool:
        logger.info(f"Pulling model {name}")
        data = self._request("POST", "/api/pull", json={"model": name, "stream": False},
                             timeout=(self.connect_timeout, None)).json()
        return data.get("status") == "success"

    def delete_model(self, name: str) -> bool:
        logger.info(f"Deleting model {name}")
        self._request("DELETE", "/api/delete", json={"model": name})
        return True

    def copy_model(self, source: str, destination: str) -> bool:
        logger.info(f"Copying model {source} -> {destination}")
        self._request("POST", "/api/copy", json={"source": source, "destination": destination})
        return True

    def get_model_info(self, name: str) -> Dict[str, Any]:
        return self._request("POST", "/api/show", json={"model": name}).json()

    def is_available(self) -> bool:
        """Check if the server answers at all."""
        try:
            self._request("GET", "/api/tags", timeout=(self.connect_timeout, 10))
            return True
        except ProviderUnavailableError as e:
            logger.warning(f"Ollama health check failed: {e}")
            return False

    def close(self) -> None:
        self.session.close()

    def _request(self, method: str, path: str, timeout=None, **kwargs) -> requests.Response:
        """
        Send a request and check its status.

        Raises:
            ProviderUnavailableError: On connection errors, timeouts and non-2xx responses
        """
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=timeout or self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"Failed to reach Ollama at {url}: {e}")
            if is_read_timeout(e):
                raise GenerationTimeoutError(f"No response from {url}: {e}", provider=PROVIDER) from e
            raise ProviderUnavailableError(f"Cannot reach {url}: {e}", provider=PROVIDER) from e

        if response.status_code >= 400:
            body = response.text[:500]
            response.close()
            logger.error(f"HTTP error from Ollama: {response.status_code} - {body}")
            raise ProviderUnavailableError(
                f"Ollama API error: {response.status_code} - {body}",
                provider=PROVIDER,
                status_code=response.status_code,
            )
        return response
