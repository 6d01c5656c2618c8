"""
Tests for the OpenAI SDK wrappers: chat completions, native web search and
embeddings. The SDK clients are replaced with mocks.
"""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import MagicMock

from services.llm_client import LLMClient
from services.providers import ModelHandle, Provider
from tools.embeddings import OpenAIEmbedder, create_embedder
from tools.web_search import MAX_WEB_SOURCES, web_search


def completion(content="", tool_calls=None, prompt_tokens=12, completion_tokens=7):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message)],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


def sdk_tool_call(name, arguments, call_id="call_abc"):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


def make_llm_client(response):
    client = LLMClient(ModelHandle(provider=Provider.ANTHROPIC, model_id="claude-haiku-4-5", api_key="sk-test"))
    client._openai = MagicMock()
    client._openai.chat.completions.create.return_value = response
    return client


class TestLLMClient:
    """Chat completions translation."""

    def test_plain_reply(self):
        client = make_llm_client(completion("Hello from MetaDJai"))
        result = client.chat([{"role": "user", "content": "hi"}], system="Be kind")

        assert result == {
            "message": {"role": "assistant", "content": "Hello from MetaDJai"},
            "usage": {"promptTokens": 12, "completionTokens": 7},
            "model": "claude-haiku-4-5",
        }
        kwargs = client._openai.chat.completions.create.call_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "Be kind"}
        assert kwargs["model"] == "claude-haiku-4-5"
        assert "tools" not in kwargs

    def test_tool_calls_parsed(self):
        calls = [sdk_tool_call("searchCatalog", '{"query": "ambient"}'), sdk_tool_call("getCatalogSummary", "not json")]
        client = make_llm_client(completion(tool_calls=calls))
        result = client.chat([{"role": "user", "content": "hi"}], tools=[{"type": "function"}])

        assert result["message"]["tool_calls"] == [
            {"function": {"name": "searchCatalog", "arguments": {"query": "ambient"}}, "id": "call_abc"},
            {"function": {"name": "getCatalogSummary", "arguments": {}}, "id": "call_abc"},
        ]

    def test_tool_messages_translated(self):
        client = make_llm_client(completion("done"))
        client.chat([
            {"role": "user", "content": "play"},
            {
                "role": "assistant",
                "content": "",
                "tool_calls": [{"id": "call_1", "function": {"name": "searchCatalog", "arguments": {"query": "x"}}}],
            },
            {"role": "tool", "tool_call_id": "call_1", "content": {"output": [], "sizeBytes": 2, "truncated": False}},
        ])

        sent = client._openai.chat.completions.create.call_args.kwargs["messages"]
        assert sent[1]["content"] is None
        assert sent[1]["tool_calls"][0]["function"]["arguments"] == '{"query": "x"}'
        assert sent[2]["role"] == "tool"
        assert json.loads(sent[2]["content"]) == {"output": [], "sizeBytes": 2, "truncated": False}

    def test_unavailable_handle_is_unhealthy(self):
        client = LLMClient(ModelHandle(provider=Provider.XAI, model_id="grok-3"))
        assert client.is_healthy() is False


class TestWebSearch:
    """OpenAI Responses API web search."""

    def test_answer_and_deduplicated_sources(self):
        annotations = [
            SimpleNamespace(type="url_citation", url=f"https://example.com/{i % 7}", title=f"Source {i % 7}")
            for i in range(10)
        ]
        annotations.append(SimpleNamespace(type="file_citation", url="https://ignored.example", title="x"))
        response = SimpleNamespace(
            output_text="Tonight's headline act is announced.",
            output=[
                SimpleNamespace(type="web_search_call"),
                SimpleNamespace(type="message", content=[SimpleNamespace(annotations=annotations)]),
            ],
        )
        client = MagicMock()
        client.responses.create.return_value = response

        result = asyncio.run(web_search("festival lineup", client=client, model="gpt-4o"))

        assert result["answer"] == "Tonight's headline act is announced."
        assert len(result["sources"]) == MAX_WEB_SOURCES
        assert result["sources"][0] == {"title": "Source 0", "url": "https://example.com/0"}
        assert len({s["url"] for s in result["sources"]}) == MAX_WEB_SOURCES
        kwargs = client.responses.create.call_args.kwargs
        assert kwargs["tools"] == [{"type": "web_search"}]
        assert kwargs["input"] == "festival lineup"


class TestEmbedder:
    """OpenAI embeddings."""

    def test_batch_ordered_by_index(self):
        embedder = OpenAIEmbedder("sk-test")
        embedder._client = MagicMock()
        embedder._client.embeddings.create.return_value = SimpleNamespace(
            data=[SimpleNamespace(index=1, embedding=[0.0, 1.0]), SimpleNamespace(index=0, embedding=[1.0, 0.0])]
        )

        assert asyncio.run(embedder.embed_many(["a", "b"])) == [[1.0, 0.0], [0.0, 1.0]]

    def test_empty_batch_skips_call(self):
        embedder = OpenAIEmbedder("sk-test")
        embedder._client = MagicMock()
        assert asyncio.run(embedder.embed_many([])) == []
        embedder._client.embeddings.create.assert_not_called()

    def test_create_without_key(self):
        assert create_embedder("") is None
        assert isinstance(create_embedder("sk-test"), OpenAIEmbedder)
