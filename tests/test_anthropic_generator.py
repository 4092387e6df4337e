"""Tests for Anthropic text generator."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch
import pytest

from recallbot.text_generators.anthropic import WEB_SEARCH_TOOL, AnthropicTextGenerator


@pytest.fixture
def generator():
    """Create an Anthropic generator instance."""
    return AnthropicTextGenerator(model="claude-sonnet-4-5")


@pytest.fixture
def mock_client():
    """Create a mock AsyncAnthropic client."""
    mock = MagicMock()
    mock.messages = MagicMock()
    return mock


def _response(*texts):
    response = MagicMock()
    blocks = []
    for text in texts:
        block = MagicMock()
        block.text = text
        blocks.append(block)
    response.content = blocks
    return response


class TestAnthropicTextGeneratorInit:
    def test_default_model(self):
        gen = AnthropicTextGenerator()
        assert gen.model == "claude-haiku-4-5"

    def test_custom_model(self):
        gen = AnthropicTextGenerator(model="claude-opus-4-1")
        assert gen.model == "claude-opus-4-1"


class TestGenerate:
    """Tests for the generate method."""

    @pytest.mark.asyncio
    async def test_generate_with_string_prompt(self, generator, mock_client):
        mock_client.messages.create = AsyncMock(return_value=_response("Hello, world!"))

        with patch.object(generator, '_get_client', return_value=mock_client):
            result = await generator.generate("Hello")

        assert result == "Hello, world!"
        mock_client.messages.create.assert_called_once()
        call_kwargs = mock_client.messages.create.call_args.kwargs
        assert call_kwargs["model"] == generator.model
        assert call_kwargs["messages"] == [{"role": "user", "content": "Hello"}]
        assert "tools" not in call_kwargs

    @pytest.mark.asyncio
    async def test_generate_with_message_list(self, generator, mock_client):
        mock_client.messages.create = AsyncMock(return_value=_response("Response"))

        messages = [
            {"role": "user", "content": "Hello"},
            {"role": "assistant", "content": "Hi there!"},
            {"role": "user", "content": "How are you?"},
        ]

        with patch.object(generator, '_get_client', return_value=mock_client):
            result = await generator.generate(messages)

        assert result == "Response"
        call_kwargs = mock_client.messages.create.call_args.kwargs
        assert len(call_kwargs["messages"]) == 3

    @pytest.mark.asyncio
    async def test_system_messages_become_cached_system_block(self, generator, mock_client):
        """System messages are moved to the top-level parameter."""
        mock_client.messages.create = AsyncMock(return_value=_response("Response"))

        messages = [
            {"role": "system", "content": "You are helpful."},
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Hello"},
        ]

        with patch.object(generator, '_get_client', return_value=mock_client):
            await generator.generate(messages)

        call_kwargs = mock_client.messages.create.call_args.kwargs
        assert call_kwargs["system"] == [
            {
                "type": "text",
                "text": "You are helpful.\n\nBe brief.",
                "cache_control": {"type": "ephemeral"},
            }
        ]
        assert [m["role"] for m in call_kwargs["messages"]] == ["user"]

    @pytest.mark.asyncio
    async def test_generate_with_temperature(self, generator, mock_client):
        mock_client.messages.create = AsyncMock(return_value=_response("Response"))

        with patch.object(generator, '_get_client', return_value=mock_client):
            await generator.generate("Hello", temperature=0.0)

        assert mock_client.messages.create.call_args.kwargs["temperature"] == 0.0

    @pytest.mark.asyncio
    async def test_web_search_attaches_server_tool(self, generator, mock_client):
        mock_client.messages.create = AsyncMock(return_value=_response("It is sunny."))

        with patch.object(generator, '_get_client', return_value=mock_client):
            await generator.generate("Weather in Oslo?", web_search=True)

        call_kwargs = mock_client.messages.create.call_args.kwargs
        assert call_kwargs["tools"] == [WEB_SEARCH_TOOL]
        assert WEB_SEARCH_TOOL["type"] == "web_search_20250305"

    @pytest.mark.asyncio
    async def test_generate_with_tools_reports_actual_search(self, generator, mock_client):
        searched = _response("Sunny in Oslo.")
        tool_use = MagicMock()
        tool_use.type = "server_tool_use"
        tool_use.name = "web_search"
        tool_use.text = None
        searched.content.insert(0, tool_use)
        mock_client.messages.create = AsyncMock(side_effect=[searched, _response("Paris.")])

        with patch.object(generator, '_get_client', return_value=mock_client):
            first = await generator.generate_with_tools("Weather in Oslo?", web_search=True)
            second = await generator.generate_with_tools("Capital of France?", web_search=True)

        assert first == ("Sunny in Oslo.", ["web_search"])
        assert second == ("Paris.", [])

    @pytest.mark.asyncio
    async def test_image_blocks_pass_through(self, generator, mock_client):
        mock_client.messages.create = AsyncMock(return_value=_response("A cat."))
        content = [
            {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "AAAA"}},
            {"type": "text", "text": "Describe this."},
        ]

        with patch.object(generator, '_get_client', return_value=mock_client):
            await generator.generate([{"role": "user", "content": content}])

        assert mock_client.messages.create.call_args.kwargs["messages"][0]["content"] == content

    @pytest.mark.asyncio
    async def test_generate_invalid_prompt_type_raises(self, generator):
        with pytest.raises(TypeError, match="must be either a string or a sequence"):
            await generator.generate(12345)

    @pytest.mark.asyncio
    async def test_generate_invalid_message_format_raises(self, generator):
        messages = [{"not_role": "user"}]  # Missing 'role' key
        with pytest.raises(TypeError, match="must be a dict with 'role' and 'content'"):
            await generator.generate(messages)

    @pytest.mark.asyncio
    async def test_generate_joins_text_blocks(self, generator, mock_client):
        response = _response("Part 1 ", "Part 2")
        tool_block = MagicMock()
        tool_block.text = None  # server tool use blocks carry no text
        response.content.insert(1, tool_block)
        mock_client.messages.create = AsyncMock(return_value=response)

        with patch.object(generator, '_get_client', return_value=mock_client):
            result = await generator.generate("Hello")

        assert result == "Part 1 Part 2"

    @pytest.mark.asyncio
    async def test_generate_handles_empty_response(self, generator, mock_client):
        mock_client.messages.create = AsyncMock(return_value=_response())

        with patch.object(generator, '_get_client', return_value=mock_client):
            result = await generator.generate("Hello")

        assert result == ""


class TestErrorHandling:
    """API errors are logged and re-raised."""

    @pytest.mark.asyncio
    async def test_rate_limit_error_propagates(self, generator, mock_client):
        from anthropic import RateLimitError

        mock_client.messages.create = AsyncMock(
            side_effect=RateLimitError("Rate limit exceeded", response=MagicMock(), body=None)
        )

        with patch.object(generator, '_get_client', return_value=mock_client):
            with pytest.raises(RateLimitError):
                await generator.generate("Hello")

    @pytest.mark.asyncio
    async def test_connection_error_propagates(self, generator, mock_client):
        from anthropic import APIConnectionError

        mock_client.messages.create = AsyncMock(
            side_effect=APIConnectionError(message="Connection failed", request=MagicMock())
        )

        with patch.object(generator, '_get_client', return_value=mock_client):
            with pytest.raises(APIConnectionError):
                await generator.generate("Hello")

    @pytest.mark.asyncio
    async def test_api_error_propagates(self, generator, mock_client):
        from anthropic import APIStatusError

        mock_response = MagicMock()
        mock_response.status_code = 500
        error = APIStatusError(
            message="Internal error",
            response=mock_response,
            body={"error": {"message": "Internal error"}},
        )
        mock_client.messages.create = AsyncMock(side_effect=error)

        with patch.object(generator, '_get_client', return_value=mock_client):
            with pytest.raises(APIStatusError):
                await generator.generate("Hello")
