import asyncio
import json
import logging
import os
import threading
from typing import Any, Dict, List, NamedTuple, Optional, Protocol, Tuple

from openai import OpenAI
from langchain_google_vertexai import ChatVertexAI
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from renovatr.base_utils import color_print, logger
from renovatr.errors import InvocationTimeout, NetworkFailure
from renovatr.model_props import estimate_cost_usd, get_model_for_tier, is_openai_model, parse_model_name

GOOGLE_CLOUD_PROJECT = os.getenv("GOOGLE_CLOUD_PROJECT", "")
GOOGLE_CLOUD_REGION = os.getenv("GOOGLE_CLOUD_REGION", "us-central1")
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "60"))


class Completion(NamedTuple):
    """Text of one model call and that call's own estimated cost."""

    text: str
    cost_usd: float = 0.0


class GenerativeBackend(Protocol):
    def complete(self, messages: List[BaseMessage], tier, schema: Optional[Dict[str, Any]] = None) -> Completion:
        ...


def _is_timeout_error(e: Exception) -> bool:
    if isinstance(e, (asyncio.TimeoutError, TimeoutError)):
        return True
    msg = repr(e)
    return "TimeoutError" in msg or "Timeout" in type(e).__name__ or "timed out" in msg.lower()


def _is_resource_exhausted_error(e: Exception) -> bool:
    msg = str(e)
    return (
        "429" in msg
        and (
            "RESOURCE_EXHAUSTED" in msg
            or "Resource has been exhausted" in msg
            or "Too Many Requests" in msg
        )
    )


def classify_provider_error(e: Exception) -> Exception:
    """Map a provider/transport exception onto InvocationTimeout or NetworkFailure."""
    if _is_timeout_error(e):
        return InvocationTimeout(f"Model call timed out: {e}")
    if _is_resource_exhausted_error(e):
        return NetworkFailure(f"Model quota exhausted (429): {e}")
    return NetworkFailure(f"Model call failed: {type(e).__name__}: {e}")


def _content_to_text(content: Any) -> str:
    """Chat models may answer with a plain string or a list of content blocks."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        chunks = []
        for block in content:
            if isinstance(block, str):
                chunks.append(block)
            elif isinstance(block, dict) and block.get("type", "text") == "text":
                chunks.append(str(block.get("text") or ""))
        return "".join(chunks)
    return str(content)


class BaseLlmClient:
    """
    Common usage accounting. Every merged call adds its token counts and estimated
    USD cost to `last_usage`; the merge helpers return that call's own cost.
    """

    last_usage: Optional[Dict[str, float]]
    model_name: str
    service_tier: Optional[str] = None
    _usage_lock: threading.Lock = threading.Lock()

    def _merge_counts(self, inc: Dict[str, float]) -> float:
        inc["accrued_cost"] = estimate_cost_usd(
            llm_model_name=self.model_name,
            prompt_tokens=int(inc["prompt_token_count"]),
            completion_tokens=int(inc["candidates_token_count"]),
            service_tier=self.service_tier,
        )
        with self._usage_lock:
            if self.last_usage is None:
                self.last_usage = dict(inc)
            else:
                for k, v in inc.items():
                    self.last_usage[k] = (self.last_usage.get(k, 0) or 0) + (v or 0)
        return inc["accrued_cost"]

    def _merge_usage(self, resp: Any) -> float:
        usage = getattr(resp, "usage", None) if resp is not None else None
        if usage is None:
            return 0.0
        details = getattr(usage, "input_tokens_details", None)
        return self._merge_counts({
            "prompt_token_count": getattr(usage, "input_tokens", 0) or 0,
            "candidates_token_count": getattr(usage, "output_tokens", 0) or 0,
            "total_token_count": getattr(usage, "total_tokens", 0) or 0,
            "cached_content_token_count": (getattr(details, "cached_tokens", 0) or 0) if details else 0,
        })

    def _merge_vertex_usage(self, resp: Any) -> float:
        rm = getattr(resp, "response_metadata", None)
        usage_md = rm.get("usage_metadata") if isinstance(rm, dict) else None
        if usage_md:
            def get(k: str) -> int:
                if isinstance(usage_md, dict):
                    return int(usage_md.get(k, 0) or 0)
                return int(getattr(usage_md, k, 0) or 0)

            return self._merge_counts({
                "prompt_token_count": get("prompt_token_count"),
                "candidates_token_count": get("candidates_token_count"),
                "total_token_count": get("total_token_count"),
                "cached_content_token_count": get("cached_content_token_count"),
            })

        # LangChain's standard usage block
        std = getattr(resp, "usage_metadata", None)
        if isinstance(std, dict) and std:
            return self._merge_counts({
                "prompt_token_count": int(std.get("input_tokens", 0) or 0),
                "candidates_token_count": int(std.get("output_tokens", 0) or 0),
                "total_token_count": int(std.get("total_tokens", 0) or 0),
                "cached_content_token_count": 0,
            })
        return 0.0

    def get_accrued_cost(self) -> float:
        if not self.last_usage:
            return 0.0
        return float(self.last_usage.get("accrued_cost", 0.0))

    def get_accrued_usage(self) -> Dict[str, float]:
        return dict(self.last_usage or {})


class ChatLlmClient(BaseLlmClient):
    """
    Minimal wrapper for chat-style use:

        completion = chat_llm.invoke([SystemMessage(...), HumanMessage(...), AIMessage(...), ...])

    Under the hood:
    - Vertex: ChatVertexAI.invoke(messages), JSON output constrained by `response_schema`
    - OpenAI: Responses API with input=[{role, content}, ...] and a json_schema text format

    One HTTP call per invoke. Provider errors propagate untouched; LlmBackend classifies them.
    """

    def __init__(
        self,
        model_name: str,
        *,
        vertex_project: str,
        vertex_region: str,
        timeout: float | None = None,
        response_schema: Optional[Dict[str, Any]] = None,
    ):
        self.provider = "openai" if is_openai_model(model_name) else "vertex"
        self.model_name = model_name
        self.response_schema = response_schema
        self._timeout = timeout
        self.last_usage: Optional[Dict[str, float]] = None
        self._openai_params: Dict[str, Any] = {}

        if self.provider == "vertex":
            vertex_kwargs: Dict[str, Any] = {}
            if response_schema is not None:
                vertex_kwargs["response_mime_type"] = "application/json"
                vertex_kwargs["response_schema"] = response_schema
            self._vertex = ChatVertexAI(
                project=vertex_project or None,
                location=vertex_region,
                model_name=model_name,
                timeout=timeout,
                max_retries=0,
                **vertex_kwargs,
            )
            self._client = None
        else:
            self._vertex = None
            self.model_name, self._openai_params = parse_model_name(self.model_name)
            self.service_tier = self._openai_params.get("service_tier")
            if response_schema is not None:
                self._openai_params.setdefault("text", {})["format"] = {
                    "type": "json_schema",
                    "name": str(response_schema.get("title") or "response"),
                    "schema": response_schema,
                    "strict": False,
                }
            client_kwargs: Dict[str, Any] = {"max_retries": 0}
            if timeout is not None:
                client_kwargs["timeout"] = timeout

            self._client = OpenAI(**client_kwargs)

    def _to_openai_content(self, content: Any, role: str) -> Any:
        if isinstance(content, str) or role != "user":
            return _content_to_text(content)
        out: List[Dict[str, Any]] = []
        for block in content:
            if isinstance(block, str):
                out.append({"type": "input_text", "text": block})
            elif block.get("type") == "image_url":
                image = block.get("image_url")
                url = image.get("url") if isinstance(image, dict) else image
                out.append({"type": "input_image", "image_url": url})
            else:
                out.append({"type": "input_text", "text": str(block.get("text") or "")})
        return out

    def _to_openai_messages(self, messages: List[BaseMessage]) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for m in messages:
            if isinstance(m, SystemMessage):
                role = "developer"
            elif isinstance(m, AIMessage):
                role = "assistant"
            else:
                role = "user"
            out.append({"role": role, "content": self._to_openai_content(m.content, role)})
        return out

    def invoke(self, messages: List[BaseMessage]) -> Completion:
        if self.provider == "vertex":
            resp = self._vertex.invoke(messages)
            cost = self._merge_vertex_usage(resp)
            if isinstance(resp, str):
                return Completion(resp, cost)
            return Completion(_content_to_text(getattr(resp, "content", resp)), cost)

        resp = self._client.responses.create(
            model=self.model_name,
            input=self._to_openai_messages(messages),
            **self._openai_params,
        )
        cost = self._merge_usage(resp)
        text = getattr(resp, "output_text", "") or ""
        return Completion(text.strip(), cost)


def _schema_key(schema: Optional[Dict[str, Any]]) -> Optional[str]:
    return json.dumps(schema, sort_keys=True) if schema is not None else None


class LlmBackend:
    """
    Tier-aware generative backend. Resolves the tier to a model name through the model
    config, keeps one client per (model, output schema) and performs exactly one outbound
    call per complete(). No retries: failures surface as NetworkFailure / InvocationTimeout.
    """

    def __init__(
        self,
        vertex_project: str = GOOGLE_CLOUD_PROJECT,
        vertex_region: str = GOOGLE_CLOUD_REGION,
        timeout: float | None = LLM_TIMEOUT,
    ):
        self.vertex_project = vertex_project
        self.vertex_region = vertex_region
        self.timeout = timeout
        self._clients: Dict[Tuple[str, Optional[str]], ChatLlmClient] = {}
        self._lock = threading.Lock()
        self._accrued_cost = 0.0

    def _client_for(self, model_name: str, schema: Optional[Dict[str, Any]]) -> ChatLlmClient:
        key = (model_name, _schema_key(schema))
        with self._lock:
            client = self._clients.get(key)
            if client is None:
                client = ChatLlmClient(
                    model_name,
                    vertex_project=self.vertex_project,
                    vertex_region=self.vertex_region,
                    timeout=self.timeout,
                    response_schema=schema,
                )
                self._clients[key] = client
            return client

    def complete(self, messages: List[BaseMessage], tier, schema: Optional[Dict[str, Any]] = None) -> Completion:
        model_name = get_model_for_tier(tier)

        try:
            client = self._client_for(model_name, schema)
            completion = client.invoke(messages)
        except Exception as e:
            err = classify_provider_error(e)
            color_print(f"LLM call to {model_name} failed: {err}", color="red", level=logging.WARNING)
            raise err from e

        with self._lock:
            self._accrued_cost += completion.cost_usd
        logger.info(
            f"LLM call model={model_name} tier={getattr(tier, 'value', tier)} cost_usd={completion.cost_usd:.6f}"
        )
        return completion

    def get_accrued_cost(self) -> float:
        with self._lock:
            return self._accrued_cost
