# =============================================================================
# Unit Tests — Embedding Service
# =============================================================================
#
# The OpenAI client is replaced by a MagicMock whose embeddings.create
# returns objects shaped like the SDK response (data[j].index / .embedding).
# =============================================================================

from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from app.errors import EmbedServiceError
from app.services.embedder import CLAMP_MARKER, clamp_for_embed, embed_batch, embed_query


def _fake_client(reverse: bool = False, drop_last: bool = False):
    """Client that embeds each input as [batch_call_no, position, len(text)]."""
    client = MagicMock()
    calls: list[list[str]] = []

    def create(**kwargs):
        batch = kwargs["input"]
        calls.append(list(batch))
        data = [
            SimpleNamespace(index=j, embedding=[float(len(calls)), float(j), float(len(t))])
            for j, t in enumerate(batch)
        ]
        if drop_last:
            data = data[:-1]
        if reverse:
            data = list(reversed(data))
        return SimpleNamespace(data=data)

    client.embeddings.create.side_effect = create
    return client, calls


class TestClampForEmbed:
    def test_short_text_untouched(self):
        text = "hello"
        assert clamp_for_embed(text, max_tokens=10, max_chars=20) is text

    def test_long_text_cut_with_marker(self):
        out = clamp_for_embed("a" * 100, max_tokens=10, max_chars=20)
        assert out == "a" * 20 + CLAMP_MARKER


class TestEmbedBatch:
    def test_empty_input_makes_no_call(self):
        client, calls = _fake_client()
        assert embed_batch([], client=client) == []
        assert calls == []

    def test_batches_sequentially_in_order(self):
        client, calls = _fake_client()
        texts = [f"t{i}" for i in range(5)]
        vectors = embed_batch(texts, batch_size=2, client=client)

        assert [len(b) for b in calls] == [2, 2, 1]
        assert len(vectors) == 5
        # [batch call, position within batch]
        assert [v[:2] for v in vectors] == [
            [1.0, 0.0], [1.0, 1.0], [2.0, 0.0], [2.0, 1.0], [3.0, 0.0],
        ]

    def test_out_of_order_response_sorted_by_index(self):
        client, _ = _fake_client(reverse=True)
        vectors = embed_batch(["a", "bb", "ccc"], batch_size=10, client=client)
        assert [v[2] for v in vectors] == [1.0, 2.0, 3.0]

    def test_oversized_input_clamped_before_sending(self):
        client, calls = _fake_client()
        embed_batch(["x" * 40_000], client=client)
        sent = calls[0][0]
        assert sent.endswith(CLAMP_MARKER)
        assert len(sent) < 40_000

    def test_count_mismatch_raises(self):
        client, _ = _fake_client(drop_last=True)
        with pytest.raises(EmbedServiceError) as exc_info:
            embed_batch(["a", "b"], client=client)
        assert exc_info.value.code == "EMBED_COUNT_MISMATCH"

    def test_failing_batch_fails_whole_call(self):
        client = MagicMock()
        request = httpx.Request("POST", "https://api.test/embeddings")
        ok = SimpleNamespace(data=[SimpleNamespace(index=0, embedding=[0.1])])
        client.embeddings.create.side_effect = [
            ok,
            openai.APIConnectionError(request=request),
        ]
        with pytest.raises(EmbedServiceError) as exc_info:
            embed_batch(["a", "b"], batch_size=1, client=client)
        assert exc_info.value.code == "EMBED_FAILED"
        assert exc_info.value.stage == "embed"


class TestEmbedQuery:
    def test_returns_single_vector(self):
        client, calls = _fake_client()
        assert embed_query("what do you do?", client=client) == [1.0, 0.0, 15.0]
        assert calls == [["what do you do?"]]
