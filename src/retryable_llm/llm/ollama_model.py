"""
Ollama adapters for the model boundary.

Communicates with the Ollama API using httpx AsyncClient. Supports:
- Non-streaming generation (POST /api/generate)
- Streamed generation (NDJSON from POST /api/generate with stream=true)
- Embeddings (POST /api/embed)
- Structured output via JSON Schema (format parameter)

The adapters make exactly one HTTP call per invocation. Retrying and
falling back is left to the retry layer wrapping them.
"""

import json
import time
from typing import Any, AsyncIterator, Dict, Optional

import httpx
import structlog

from retryable_llm.config import settings
from retryable_llm.exceptions import ModelCallError, RequestTimeoutError
from retryable_llm.llm.base_model import BaseEmbeddingModel, BaseLanguageModel
from retryable_llm.models.enums import FinishReason, StreamPartType
from retryable_llm.models.llm_models import (
    EmbedOptions,
    EmbedResult,
    GenerateOptions,
    GenerateResult,
    StreamPart,
    Usage,
)
from retryable_llm.monitoring.metrics import llm_latency_seconds, llm_tokens_total


logger = structlog.get_logger(__name__)

PROVIDER = "ollama"

_DONE_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "load": FinishReason.OTHER,
    "unload": FinishReason.OTHER,
}


def _finish_reason(data: Dict[str, Any]) -> FinishReason:
    reason = data.get("done_reason")
    if reason is None:
        return FinishReason.STOP if data.get("done") else FinishReason.UNKNOWN
    return _DONE_REASONS.get(reason, FinishReason.OTHER)


def _usage(data: Dict[str, Any]) -> Usage:
    prompt_tokens = data.get("prompt_eval_count")
    completion_tokens = data.get("eval_count")
    total_tokens = None
    if prompt_tokens is not None and completion_tokens is not None:
        total_tokens = prompt_tokens + completion_tokens
    return Usage(
        input_tokens=prompt_tokens,
        output_tokens=completion_tokens,
        total_tokens=total_tokens,
    )


def _status_error(response: httpx.Response, model_id: str) -> ModelCallError:
    """Translate a non-2xx Ollama response into a ModelCallError."""
    body = response.text
    data: Any = None
    message = f"Ollama error: {response.status_code}"
    try:
        data = response.json()
    except ValueError:
        pass
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        message = data["error"]

    is_retryable = None
    if response.status_code == 404:
        # Model not pulled on this server
        message = f"Model not found: {model_id}"
        is_retryable = False

    return ModelCallError(
        message,
        status_code=response.status_code,
        is_retryable=is_retryable,
        url=str(response.request.url),
        response_headers=dict(response.headers),
        response_body=body,
        data=data,
    )


class _OllamaConnection:
    """Shared httpx connection handling for the Ollama adapters."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        connection_limits: Optional[httpx.Limits] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.OLLAMA_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.OLLAMA_TIMEOUT

        if connection_limits is None:
            connection_limits = httpx.Limits(
                max_keepalive_connections=5,
                max_connections=10,
                keepalive_expiry=30.0
            )
        self._connection_limits = connection_limits
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                limits=self._connection_limits,
                transport=self._transport,
                follow_redirects=True
            )
            logger.debug("Created new httpx AsyncClient", base_url=self.base_url)
        return self._client

    async def _post(self, path: str, payload: Dict[str, Any], model_id: str,
                    headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """POST `payload` and return the decoded JSON body."""
        client = await self._get_client()
        try:
            response = await client.post(path, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(
                f"Ollama request timed out after {self.timeout}s"
            ) from e
        except httpx.TransportError as e:
            raise ModelCallError(
                f"Network error: {e}",
                is_retryable=True,
                url=f"{self.base_url}{path}",
                details={"error_type": type(e).__name__},
            ) from e

        if response.is_error:
            raise _status_error(response, model_id)

        try:
            return response.json()
        except ValueError as e:
            raise ModelCallError(
                "Invalid JSON response from Ollama",
                status_code=response.status_code,
                is_retryable=False,
                response_body=response.text,
                details={"parse_error": str(e)},
            ) from e

    async def close(self):
        """Close the HTTP client connection."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            logger.debug("Closed Ollama client connection")


class OllamaLanguageModel(_OllamaConnection, BaseLanguageModel):
    """
    Ollama language model.

    API Endpoints:
    - POST /api/generate: Generate completion (streamed or not)

    Provider options are read from options.provider_options["ollama"]:
    "options" is merged into the Ollama options object, "keep_alive"
    and "think" are copied to the top-level payload.
    """

    def __init__(
        self,
        model_id: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        connection_limits: Optional[httpx.Limits] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        _OllamaConnection.__init__(self, base_url, timeout, connection_limits, transport)
        BaseLanguageModel.__init__(self, PROVIDER, model_id or settings.OLLAMA_MODEL)

        logger.info(
            "Ollama language model initialized",
            model=self.model_id,
            base_url=self.base_url,
            timeout=self.timeout,
        )

    def _build_payload(self, options: GenerateOptions, stream: bool) -> Dict[str, Any]:
        """
        Build the /api/generate payload:
        {
            "model": "qwen2.5:7b",
            "prompt": "...",
            "system": "...",
            "stream": false,
            "format": <JSON Schema>,
            "options": {"temperature": 0.1, "num_predict": 2048, ...}
        }
        """
        ollama_options: Dict[str, Any] = {}
        if options.temperature is not None:
            ollama_options["temperature"] = options.temperature
        if options.max_output_tokens is not None:
            ollama_options["num_predict"] = options.max_output_tokens
        if options.top_p is not None:
            ollama_options["top_p"] = options.top_p
        if options.top_k is not None:
            ollama_options["top_k"] = options.top_k
        if options.seed is not None:
            ollama_options["seed"] = options.seed
        if options.stop_sequences:
            ollama_options["stop"] = options.stop_sequences
        if options.presence_penalty is not None:
            ollama_options["presence_penalty"] = options.presence_penalty
        if options.frequency_penalty is not None:
            ollama_options["frequency_penalty"] = options.frequency_penalty

        payload: Dict[str, Any] = {
            "model": self.model_id,
            "prompt": options.prompt,
            "stream": stream,
        }
        if options.system:
            payload["system"] = options.system
        if options.response_format:
            # Ollama expects the schema object directly as "format"
            payload["format"] = options.response_format

        provider = (options.provider_options or {}).get(PROVIDER, {})
        ollama_options.update(provider.get("options", {}))
        for key in ("keep_alive", "think"):
            if key in provider:
                payload[key] = provider[key]

        if ollama_options:
            payload["options"] = ollama_options
        return payload

    async def generate(self, options: GenerateOptions) -> GenerateResult:
        start_time = time.time()
        payload = self._build_payload(options, stream=False)

        logger.info(
            "Sending generation request to Ollama",
            model=self.model_id,
            prompt_length=len(options.prompt),
            has_schema=bool(options.response_format),
        )

        try:
            data = await self._post("/api/generate", payload, self.model_id, options.headers)
        except (ModelCallError, RequestTimeoutError):
            llm_latency_seconds.labels(model=self.model_id, success="false").observe(
                time.time() - start_time
            )
            raise

        latency_ms = int((time.time() - start_time) * 1000)
        usage = _usage(data)
        finish_reason = _finish_reason(data)

        logger.info(
            "Ollama generation successful",
            model=self.model_id,
            latency_ms=latency_ms,
            prompt_tokens=usage.input_tokens,
            completion_tokens=usage.output_tokens,
            finish_reason=finish_reason.value,
        )

        llm_latency_seconds.labels(model=self.model_id, success="true").observe(latency_ms / 1000.0)
        if usage.input_tokens:
            llm_tokens_total.labels(model=self.model_id, token_type="prompt").inc(usage.input_tokens)
        if usage.output_tokens:
            llm_tokens_total.labels(model=self.model_id, token_type="completion").inc(usage.output_tokens)

        return GenerateResult(
            text=data.get("response", ""),
            finish_reason=finish_reason,
            usage=usage,
            model_id=data.get("model", self.model_id),
            raw_metadata={
                "total_duration": data.get("total_duration"),
                "load_duration": data.get("load_duration"),
                "eval_duration": data.get("eval_duration"),
                "created_at": data.get("created_at"),
            },
        )

    async def stream(self, options: GenerateOptions) -> AsyncIterator[StreamPart]:
        """
        Open a streamed generation.

        HTTP and connection errors raise here (setup failure). Errors
        reported inside the NDJSON body become error parts.
        """
        payload = self._build_payload(options, stream=True)
        client = await self._get_client()
        request = client.build_request("POST", "/api/generate", json=payload, headers=options.headers)

        logger.info("Opening Ollama stream", model=self.model_id, prompt_length=len(options.prompt))

        try:
            response = await client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(
                f"Ollama request timed out after {self.timeout}s"
            ) from e
        except httpx.TransportError as e:
            raise ModelCallError(
                f"Network error: {e}",
                is_retryable=True,
                url=str(request.url),
                details={"error_type": type(e).__name__},
            ) from e

        if response.is_error:
            await response.aread()
            await response.aclose()
            raise _status_error(response, self.model_id)

        return self._read_stream(response)

    async def _read_stream(self, response: httpx.Response) -> AsyncIterator[StreamPart]:
        text_started = False
        try:
            yield StreamPart(type=StreamPartType.STREAM_START)
            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                data = json.loads(line)

                if "error" in data:
                    yield StreamPart.error_part(ModelCallError(
                        str(data["error"]),
                        status_code=response.status_code,
                        data=data,
                    ))
                    return

                chunk = data.get("response", "")
                if chunk:
                    if not text_started:
                        text_started = True
                        yield StreamPart(type=StreamPartType.TEXT_START)
                    yield StreamPart(type=StreamPartType.TEXT_DELTA, delta=chunk)

                if data.get("done"):
                    if text_started:
                        yield StreamPart(type=StreamPartType.TEXT_END)
                    yield StreamPart(
                        type=StreamPartType.FINISH,
                        finish_reason=_finish_reason(data),
                        usage=_usage(data),
                        data={"model": data.get("model", self.model_id)},
                    )
                    return
        except json.JSONDecodeError as e:
            yield StreamPart.error_part(ModelCallError(
                "Invalid JSON chunk in Ollama stream",
                is_retryable=False,
                details={"parse_error": str(e)},
            ))
        except httpx.TimeoutException as e:
            yield StreamPart.error_part(RequestTimeoutError(f"Ollama stream timed out: {e}"))
        except httpx.TransportError as e:
            yield StreamPart.error_part(ModelCallError(
                f"Network error: {e}",
                is_retryable=True,
                details={"error_type": type(e).__name__},
            ))
        finally:
            await response.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class OllamaEmbeddingModel(_OllamaConnection, BaseEmbeddingModel):
    """
    Ollama embedding model.

    API Endpoints:
    - POST /api/embed: {"model": ..., "input": [...]} -> {"embeddings": [[...]]}
    """

    def __init__(
        self,
        model_id: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        connection_limits: Optional[httpx.Limits] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        _OllamaConnection.__init__(self, base_url, timeout, connection_limits, transport)
        BaseEmbeddingModel.__init__(self, PROVIDER, model_id or settings.OLLAMA_EMBEDDING_MODEL)

    async def embed(self, options: EmbedOptions) -> EmbedResult:
        payload: Dict[str, Any] = {"model": self.model_id, "input": options.values}
        provider = (options.provider_options or {}).get(PROVIDER, {})
        payload.update(provider)

        data = await self._post("/api/embed", payload, self.model_id, options.headers)

        embeddings = data.get("embeddings")
        if not isinstance(embeddings, list):
            raise ModelCallError(
                "Ollama embed response has no embeddings",
                is_retryable=False,
                data=data,
            )

        logger.debug("Ollama embedding successful", model=self.model_id, count=len(embeddings))
        return EmbedResult(
            embeddings=embeddings,
            usage=Usage(input_tokens=data.get("prompt_eval_count")),
            raw_metadata={"total_duration": data.get("total_duration")},
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
