"""LLM client low-level library functions for streamchat.

This talks to an OpenAI-compatible chat completions API over HTTP, with streaming (Server-Sent Events).
The streamed response is processed by `streamchat.streaming`.

For the model management helpers (`model_info`, `pull_model`), the server must also speak
the Ollama API (at the same address, without the "/v1" suffix).

For an example chat client built using these, see `streamchat.minichat`.
"""

__all__ = ["ModelNotFoundError",
           "setup",
           "list_models",
           "parse_event",
           "ChatCompletionStream", "stream_chat_completion",
           "invoke",
           "model_info", "pull_model"]

import logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

import copy
import json
import requests
from typing import Dict, Iterator, List

import sseclient  # pip install sseclient-py

from unpythonic.env import env

from . import config as streamchat_config
from .streaming import ResponseStream, StreamEvent, Usage, stream_response
from .usage import UsageAccumulator

class ModelNotFoundError(LookupError):
    """The requested model is not available on the server.

    `available` lists the model names the server does have.
    """

    def __init__(self, model: str, available: List[str]):
        super().__init__(f"model '{model}' not found on the server")
        self.model = model
        self.available = available

# --------------------------------------------------------------------------------
# Utilities

def setup(cfg: env) -> env:
    """Prepare to talk to the LLM described by `cfg` (see `streamchat.config.load_config`).

    Return an `unpythonic.env.env` (a fancy namespace) populated with the following fields:

        `base_url: str`: OpenAI-compatible API base URL, e.g. "https://api.openai.com/v1".

        `model: str`: Name of the model to use.

        `headers: Dict[str, str]`: HTTP headers for requests, including the "Authorization"
                                   header if an API key is configured.

        `request_data: Dict[str, Any]`: Template for the chat completion request.
                                        The "messages" field is populated later, by `invoke`.

        `usage: UsageAccumulator`: Token and timing statistics. The lifetime totals
                                   accumulate over all invocations that use these settings.
    """
    headers = {"Content-Type": "application/json"}
    if cfg.api_key:
        headers["Authorization"] = f"Bearer {cfg.api_key}"

    request_data = {
        "model": cfg.model,
        "stream": True,  # Send each token to the client as soon as it is available, for live-updating the UI.
        "stream_options": {"include_usage": True},  # Final chunk carries the token counts.
        "temperature": cfg.temperature,
        "messages": [],
    }

    return env(base_url=cfg.base_url,
               model=cfg.model,
               headers=headers,
               request_data=request_data,
               usage=UsageAccumulator())

def list_models(settings: env) -> List[str]:
    """List all models available at the API."""
    response = requests.get(f"{settings.base_url}/models",
                            headers=settings.headers,
                            timeout=streamchat_config.http_timeout)
    response.raise_for_status()
    payload = response.json()
    return sorted((record["id"] for record in payload["data"]), key=lambda s: s.lower())

def _ollama_url(settings: env) -> str:
    base_url = settings.base_url
    if base_url.endswith("/v1"):
        base_url = base_url[:-len("/v1")]
    return base_url

# --------------------------------------------------------------------------------
# Streaming

def parse_event(payload: Dict) -> StreamEvent:
    """Convert one decoded chat completion chunk into a `StreamEvent`.

    A chunk looks something like this::

        {'id': 'chatcmpl-123', 'object': 'chat.completion.chunk', 'model': 'qwen3:8b',
         'choices': [{'index': 0,
                      'delta': {'role': 'assistant', 'content': 'Hello'},
                      'finish_reason': None}]}

    When the request asks for usage stats, the final chunk has no choices, only the token counts::

        {'id': 'chatcmpl-123', 'object': 'chat.completion.chunk', 'model': 'qwen3:8b',
         'choices': [],
         'usage': {'prompt_tokens': 674, 'completion_tokens': 264, 'total_tokens': 938}}

    Only the first choice is used.
    """
    usage = None
    usage_record = payload.get("usage")
    if usage_record:
        usage = Usage(prompt_tokens=usage_record.get("prompt_tokens") or 0,
                      completion_tokens=usage_record.get("completion_tokens") or 0)

    choices = payload.get("choices") or []
    if not choices:
        return StreamEvent(content=None, index=None, usage=usage)

    choice = choices[0]
    delta = choice.get("delta") or {}
    return StreamEvent(content=delta.get("content") or "",
                       index=choice.get("index"),
                       usage=usage)

class ChatCompletionStream:
    def __init__(self, settings: env, messages: List[Dict]):
        """Chat completion request whose response streams in as `StreamEvent`s.

        `settings`: Obtain this by calling `setup()` at app start time.

        `messages`: Chat history in OpenAI format. See `streamchat.history.ChatHistory.get_messages`.

        The request is sent when iteration starts. Iterate only once.

        Iteration raises `RuntimeError` if the server responds with an HTTP error, `ValueError` if
        an event cannot be decoded, `ConnectionAbortedError` after `close`, and the `requests`
        exception if the connection fails.
        """
        self.settings = settings
        self.messages = messages
        self.closed = False
        self._http_response = None

    def close(self) -> None:
        """Abort the request. Safe to call from another thread while iterating.

        To tell an OpenAI-compatible server to stop generating, it is enough to close the connection.
        https://community.openai.com/t/interrupting-completion-stream-in-python/30628/7
        """
        self.closed = True
        if self._http_response is not None:
            self._http_response.close()

    def _check_closed(self) -> None:
        if self.closed:
            raise ConnectionAbortedError("chat completion stream closed by the client")

    def __iter__(self) -> Iterator[StreamEvent]:
        settings = self.settings
        data = copy.deepcopy(settings.request_data)
        data["messages"] = self.messages

        self._check_closed()
        self._http_response = requests.post(f"{settings.base_url}/chat/completions",
                                            headers=settings.headers,
                                            json=data,
                                            stream=True)
        http_response = self._http_response
        if self.closed:  # closed while connecting
            http_response.close()
            self._check_closed()
        if http_response.status_code != 200:  # not "200 OK"?
            logger.error(f"ChatCompletionStream: LLM server returned error: {http_response.status_code} {http_response.reason}. Content of error response follows.")
            logger.error(http_response.text)
            http_response.close()
            raise RuntimeError(f"While calling LLM: HTTP {http_response.status_code} {http_response.reason}")

        client = sseclient.SSEClient(http_response)
        try:
            for event in client.events():
                self._check_closed()
                if event.data == "[DONE]":  # OpenAI end-of-stream marker
                    break
                try:
                    payload = json.loads(event.data)
                except json.JSONDecodeError as exc:
                    raise ValueError(f"ChatCompletionStream: malformed event from LLM server: {event.data!r}") from exc
                if "error" in payload:  # some servers report mid-stream errors as an event
                    raise RuntimeError(f"While calling LLM: server reported error: {payload['error']}")
                yield parse_event(payload)
            self._check_closed()  # a connection closed by us may look like a normal end of stream
        except ConnectionAbortedError:
            raise
        except Exception as exc:
            if self.closed:  # the read failed because `close` shut the connection
                raise ConnectionAbortedError("chat completion stream closed by the client") from exc
            if isinstance(exc, requests.exceptions.ChunkedEncodingError):
                logger.error(f"ChatCompletionStream: Connection lost. Please check if your LLM backend is still alive (was at {settings.base_url}). Original error message follows.")
                logger.error(f"{type(exc)}: {exc}")
            raise
        finally:
            client.close()

def stream_chat_completion(settings: env, messages: List[Dict]) -> ChatCompletionStream:
    """Send `messages` to the LLM, streaming the response. See `ChatCompletionStream`."""
    return ChatCompletionStream(settings, messages)


def invoke(settings: env,
           messages: List[Dict],
           hide_thinking: bool = False) -> ResponseStream:
    """Invoke the LLM with the given chat history, streaming the reply.

    `settings`: Obtain this by calling `setup()` at app start time.

    `messages`: Chat history in OpenAI format, typically ending with the user's latest message.

    `hide_thinking`: If `True`, the thought block is removed from the streamed fragments
                     and from the final text.

    Returns a `streamchat.streaming.ResponseStream`. Iterate over it (in a `with` block) for the live fragments,
    then call its `result()` for `env(text=..., error=...)`. The statistics are in `settings.usage`.

    The reply is NOT added to the history; that is up to the caller.
    """
    plural_s = "s" if len(messages) != 1 else ""
    logger.debug(f"invoke: Sending {len(messages)} message{plural_s} to model '{settings.model}'.")
    return stream_response(stream_chat_completion(settings, messages),
                           settings.usage,
                           hide_thinking=hide_thinking)

# --------------------------------------------------------------------------------
# Model management (Ollama API)

def _ollama_list_models(settings: env) -> List[Dict]:
    response = requests.get(f"{_ollama_url(settings)}/api/tags",
                            headers=settings.headers,
                            timeout=streamchat_config.http_timeout)
    if response.status_code != 200:
        raise RuntimeError(f"Ollama API error {response.status_code}: {response.text}")
    return response.json()["models"]

def model_info(settings: env) -> env:
    """Get detailed information about the configured model, from the Ollama API.

    Returns an `unpythonic.env.env` with the attributes:

        `name: str`, `size_mb: int`,
        `family: str`, `parameter_size: str`, `quantization: str` ("Unknown" if not available),
        `api_endpoint: str`,
        `details: Optional[Dict]`: the raw "model_info" record from the server, if available.

    Raises `ModelNotFoundError` if the server does not have the model,
    and `RuntimeError` if the server cannot be queried.
    """
    models = _ollama_list_models(settings)
    for record in models:
        if record["name"] == settings.model:
            break
    else:
        raise ModelNotFoundError(settings.model, [record["name"] for record in models])

    family = parameter_size = quantization = "Unknown"
    details = None
    # The details are nice to have; if they're not available, report what we have.
    try:
        response = requests.post(f"{_ollama_url(settings)}/api/show",
                                 headers=settings.headers,
                                 json={"model": settings.model},
                                 timeout=streamchat_config.http_timeout)
    except requests.exceptions.RequestException as exc:
        logger.warning(f"model_info: failed to get model details: {type(exc)}: {exc}")
    else:
        if response.status_code == 200:
            try:
                payload = response.json()
            except ValueError as exc:
                logger.warning(f"model_info: failed to decode model details: {type(exc)}: {exc}")
            else:
                model_details = payload.get("details") or {}
                family = model_details.get("family") or family
                parameter_size = model_details.get("parameter_size") or parameter_size
                quantization = model_details.get("quantization_level") or quantization
                details = payload.get("model_info")
        else:
            logger.warning(f"model_info: server returned {response.status_code} for model details")

    return env(name=record["name"],
               size_mb=record.get("size", 0) // (1024 * 1024),
               family=family,
               parameter_size=parameter_size,
               quantization=quantization,
               api_endpoint=_ollama_url(settings),
               details=details)

def pull_model(settings: env, force: bool = False) -> bool:
    """Download the configured model to the server, via the Ollama API.

    `force`: If `False`, pull only if the server does not have the model yet.

    Returns whether a pull was performed. Raises `RuntimeError` on failure.

    This blocks until the download finishes, which may take a long time.
    """
    if not force:
        available = [record["name"] for record in _ollama_list_models(settings)]
        if settings.model in available:
            logger.info(f"pull_model: model '{settings.model}' is already available, not pulling.")
            return False
    logger.info(f"pull_model: pulling model '{settings.model}'...")
    response = requests.post(f"{_ollama_url(settings)}/api/pull",
                             headers=settings.headers,
                             json={"model": settings.model, "stream": False})
    if response.status_code != 200:
        raise RuntimeError(f"Ollama API error {response.status_code} while pulling '{settings.model}': {response.text}")
    status = response.json().get("status")
    if status != "success":
        raise RuntimeError(f"Pulling '{settings.model}' did not succeed, server status: {status}")
    logger.info(f"pull_model: model '{settings.model}' pulled.")
    return True
