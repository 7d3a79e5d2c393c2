"""Unit tests for the Gemini wrapper and lenient JSON parsing."""

from unittest.mock import Mock, patch

import pytest
from services.ai_service import AIService, AIServiceError, parse_lenient_json
from utils.retry import APIRateLimitError


@pytest.mark.unit
class TestParseLenientJson:
    """Tests for repairing damaged LLM JSON."""

    def test_code_fence_is_stripped(self):
        assert parse_lenient_json('```json\n[{"a": 1}]\n```') == [{"a": 1}]

    def test_comma_separated_objects_become_list(self):
        assert parse_lenient_json('{"a": 1}, {"a": 2}') == [{"a": 1}, {"a": 2}]

    def test_newline_separated_objects_become_list(self):
        assert parse_lenient_json('{"a": 1}\n{"a": 2}') == [{"a": 1}, {"a": 2}]

    def test_smart_quotes_are_repaired(self):
        assert parse_lenient_json("[{“a”: 1}]") == [{"a": 1}]

    def test_single_quotes_and_trailing_comma(self):
        assert parse_lenient_json("[{'a': 'b',}]") == [{"a": "b"}]

    def test_chatter_around_object(self):
        text = 'Sure! Here it is: {"title": "x"} Hope this helps.'

        assert parse_lenient_json(text) == {"title": "x"}

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_empty_raises(self, text):
        with pytest.raises(AIServiceError, match="empty"):
            parse_lenient_json(text)

    def test_garbage_raises(self):
        with pytest.raises(AIServiceError, match="Unparseable"):
            parse_lenient_json("no json here at all")


@pytest.mark.unit
class TestAIService:
    """Tests for AIService.complete error mapping and retries."""

    @pytest.fixture
    def service(self):
        with patch("services.ai_service.Client"):
            yield AIService(api_key="test_key")

    def test_unconfigured_raises(self):
        service = AIService(api_key="")

        assert not service.is_configured()
        with pytest.raises(AIServiceError):
            service.complete("hello")

    def test_returns_text(self, service):
        service.client.models.generate_content.return_value = Mock(text="hi there")

        assert service.complete("hello") == "hi there"

    def test_rate_limit_is_retried(self, service):
        service.client.models.generate_content.side_effect = [
            Exception("429 RESOURCE_EXHAUSTED"),
            Mock(text="ok"),
        ]

        with patch("utils.retry.time.sleep") as sleep:
            assert service.complete("hello") == "ok"

        assert sleep.call_count == 1
        assert service.client.models.generate_content.call_count == 2

    def test_rate_limit_gives_up_after_retries(self, service):
        service.client.models.generate_content.side_effect = Exception("429 too many requests")

        with patch("utils.retry.time.sleep"):
            with pytest.raises(APIRateLimitError):
                service.complete("hello")

        assert service.client.models.generate_content.call_count == 4

    def test_other_errors_are_not_retried(self, service):
        service.client.models.generate_content.side_effect = Exception("invalid argument")

        with pytest.raises(AIServiceError):
            service.complete("hello")

        assert service.client.models.generate_content.call_count == 1

    def test_empty_response_raises(self, service):
        service.client.models.generate_content.return_value = Mock(text="")

        with pytest.raises(AIServiceError, match="empty"):
            service.complete("hello")

    def test_complete_json(self, service):
        service.client.models.generate_content.return_value = Mock(text='```json\n{"title": "T"}\n```')

        assert service.complete_json("seo") == {"title": "T"}

    def test_ask_about_image_sends_image_and_prompt(self, service):
        service.client.models.generate_content.return_value = Mock(text="Yes")

        assert service.ask_about_image(b"\xff\xd8jpeg", "Yes/No: Is it sunny?") == "Yes"

        content = service.client.models.generate_content.call_args.kwargs["contents"][0]
        assert content.parts[0].inline_data.data == b"\xff\xd8jpeg"
        assert content.parts[1].text == "Yes/No: Is it sunny?"

    def test_ask_about_image_unconfigured(self):
        with pytest.raises(AIServiceError):
            AIService(api_key="").ask_about_image(b"", "q")
