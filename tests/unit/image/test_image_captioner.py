"""Tests for AI image captioning."""

import json

import anyio
import pytest

from magtoepub.core.state import ProgressChannel, ProgressEvent
from magtoepub.exceptions import LLMError, RateLimitError
from magtoepub.image.captioner import ImageCaptioner, parse_captions
from magtoepub.image.models import ExtractedImage
from magtoepub.llm.base import LLMResponse, TokenUsage
from magtoepub.llm.gateway import AIGateway
from tests.fakes import FakeProvider


def caption_response(pairs: dict[str, str], total: int | None = 50) -> LLMResponse:
    content = json.dumps([{"name": n, "description": d} for n, d in pairs.items()])
    usage = TokenUsage(10, 5, reported_total=total) if total is not None else None
    return LLMResponse(content=content, usage=usage, model="caption-model")


def content_images(count: int, page_start: int = 2) -> list[ExtractedImage]:
    return [
        ExtractedImage(page=page_start + i, index=1, data=f"img{i}".encode())
        for i in range(count)
    ]


@pytest.fixture
def make_captioner(sleep):
    def _make(provider: FakeProvider, **kwargs) -> ImageCaptioner:
        return ImageCaptioner(
            provider,
            gateway=AIGateway(sleep=sleep),
            model="caption-model",
            sleep=sleep,
            **kwargs,
        )

    return _make


class TestParseCaptions:
    def test_array(self):
        text = '[{"name": "image_p2_i1.jpg", "description": "A boat"}]'

        assert parse_captions(text) == {"image_p2_i1.jpg": "A boat"}

    def test_not_json(self):
        assert parse_captions("Sure! Here are your captions") == {}

    def test_not_array(self):
        assert parse_captions('{"name": "image_p2_i1.jpg", "description": "x"}') == {}

    def test_malformed_entries_skipped(self):
        text = json.dumps(
            [
                "image_p2_i1.jpg",
                {"name": "image_p2_i2.jpg"},
                {"name": 3, "description": "x"},
                {"name": "image_p3_i1.jpg", "description": "Kept"},
            ]
        )

        assert parse_captions(text) == {"image_p3_i1.jpg": "Kept"}


class TestImageCaptioner:
    """Tests for ImageCaptioner.caption."""

    @pytest.mark.asyncio
    async def test_cover_never_sent(self, make_captioner, sample_images):
        provider = FakeProvider(
            responses=[
                caption_response(
                    {
                        "image_p2_i1.jpg": "Skyline",
                        "image_p3_i1.jpg": "Chart",
                        "image_p3_i2.jpg": "Portrait",
                        "image_p1_i1.jpg": "Should be ignored",
                    }
                )
            ]
        )

        result = await make_captioner(provider).caption(sample_images)

        assert result.ok
        descriptions = {image.name: image.description for image in result.value}
        assert descriptions == {
            "image_p1_i1.jpg": "Magazine Cover",
            "image_p2_i1.jpg": "Skyline",
            "image_p3_i1.jpg": "Chart",
            "image_p3_i2.jpg": "Portrait",
        }
        sent_names = [
            part.text
            for part in provider.complete_calls[0]["parts"]
            if part.type == "text" and part.text.startswith("Filename:")
        ]
        assert "Filename: image_p1_i1.jpg" not in sent_names
        assert len(sent_names) == 3

    @pytest.mark.asyncio
    async def test_request_shape(self, make_captioner):
        images = content_images(2)
        provider = FakeProvider(responses=[caption_response({})])

        await make_captioner(provider).caption(images)

        call = provider.complete_calls[0]
        parts = call["parts"]
        assert parts[0].type == "text"
        assert "Analyze these 2 magazine images" in parts[0].text
        assert [p.type for p in parts[1:]] == ["image", "text", "image", "text"]
        assert parts[1].data == b"img0"
        assert parts[2].text == "Filename: image_p2_i1.jpg"
        assert call["model"] == "caption-model"
        assert call["response_format"].type == "json_object"

    @pytest.mark.asyncio
    async def test_batches_of_eight_with_pacing(self, make_captioner, sleep):
        images = content_images(10)
        provider = FakeProvider(responses=[caption_response({}), caption_response({})])

        await make_captioner(provider).caption(images)

        assert len(provider.complete_calls) == 2
        image_counts = [
            sum(1 for p in call["parts"] if p.type == "image")
            for call in provider.complete_calls
        ]
        assert image_counts == [8, 2]
        assert sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_unknown_names_ignored(self, make_captioner):
        images = content_images(1)
        provider = FakeProvider(
            responses=[caption_response({"image_p99_i1.jpg": "Ghost", "image_p2_i1.jpg": "Real"})]
        )

        result = await make_captioner(provider).caption(images)

        assert result.ok
        assert images[0].description == "Real"

    @pytest.mark.asyncio
    async def test_malformed_response_means_no_captions(self, make_captioner):
        images = content_images(2)
        provider = FakeProvider(
            responses=[LLMResponse(content="not json", usage=None, model="m")]
        )

        result = await make_captioner(provider).caption(images)

        assert result.ok
        assert all(image.description is None for image in result.value)

    @pytest.mark.asyncio
    async def test_failed_batch_skipped(self, make_captioner):
        images = content_images(9)
        provider = FakeProvider(
            responses=[
                LLMError("boom"),
                caption_response({"image_p10_i1.jpg": "Last one"}),
            ]
        )

        result = await make_captioner(provider).caption(images)

        assert result.status == "partial"
        assert len(result.errors) == 1
        assert all(image.description is None for image in images[:8])
        assert images[8].description == "Last one"

    @pytest.mark.asyncio
    async def test_every_batch_failed(self, make_captioner):
        provider = FakeProvider(responses=[LLMError("boom")])

        result = await make_captioner(provider).caption(content_images(3))

        assert result.failed
        assert len(result.value) == 3

    @pytest.mark.asyncio
    async def test_rate_limit_retried_through_gateway(self, make_captioner, sleep):
        images = content_images(1)
        provider = FakeProvider(
            responses=[RateLimitError(), caption_response({"image_p2_i1.jpg": "Retried"})]
        )

        result = await make_captioner(provider).caption(images)

        assert result.ok
        assert images[0].description == "Retried"
        assert len(provider.complete_calls) == 2
        assert sleep.delays == [2.0]

    @pytest.mark.asyncio
    async def test_token_usage_and_progress(self, make_captioner):
        images = content_images(9)
        provider = FakeProvider(
            responses=[caption_response({}, total=120), caption_response({}, total=30)]
        )
        send, receive = anyio.create_memory_object_stream[ProgressEvent](100)

        result = await make_captioner(provider).caption(images, ProgressChannel(send))
        send.close()
        events = [event async for event in receive]

        assert result.token_usage == 150
        assert [e.tokens for e in events if e.kind == "usage"] == [120, 30]
        progress = [e for e in events if e.kind == "progress"]
        assert [e.progress for e in progress] == [89, 100]
        assert progress[0].message == "Labeled 8 of 9 images..."

    @pytest.mark.asyncio
    async def test_only_cover(self, make_captioner):
        provider = FakeProvider()
        cover = ExtractedImage(page=1, index=1, data=b"c", description="Magazine Cover")

        result = await make_captioner(provider).caption([cover])

        assert result.ok
        assert result.value == [cover]
        assert provider.complete_calls == []
