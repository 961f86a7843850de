"""
マイソク画像解析のテスト

Azure OpenAI クライアントは MagicMock で置き換えます。
"""
from unittest.mock import MagicMock

import pytest

from app.services.vision_service import VisionService, parse_myosoku_response


def completion(content):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


class TestParseMyosokuResponse:

    def test_extracts_json_from_surrounding_text(self):
        content = '解析結果です。\n```json\n{"tenant_name": "田中太郎", "rent_price": 80000}\n```'

        data = parse_myosoku_response(content)

        assert data.tenant_name == "田中太郎"
        assert data.rent_price == 80000

    def test_numeric_strings_are_normalised(self):
        data = parse_myosoku_response('{"rent_price": "80,000円", "deposit": "", "ad_fee": 50000.0}')

        assert data.rent_price == 80000
        assert data.deposit is None
        assert data.ad_fee == 50000

    def test_unknown_keys_are_ignored(self):
        data = parse_myosoku_response('{"landlord_name": "山田花子", "floor": "3F"}')

        assert data.landlord_name == "山田花子"

    def test_missing_json_raises(self):
        with pytest.raises(ValueError):
            parse_myosoku_response("読み取れませんでした")


class TestVisionService:

    def test_analyze_sends_image_as_data_url(self):
        client = MagicMock()
        client.chat.completions.create.return_value = completion('{"tenant_name": "田中太郎"}')

        result = VisionService(client=client).analyze_myosoku(b"\x89PNG", "image/png")

        assert result.ok
        assert result.value.tenant_name == "田中太郎"
        content = client.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        assert content[1]["image_url"]["url"] == "data:image/png;base64,iVBORw=="

    def test_unparseable_response_is_failure(self):
        client = MagicMock()
        client.chat.completions.create.return_value = completion("no json here")

        result = VisionService(client=client).analyze_myosoku(b"\xff\xd8", "image/jpeg")

        assert not result.ok
        assert result.error.channel == "vision"

    def test_empty_response_is_failure(self):
        client = MagicMock()
        client.chat.completions.create.return_value = completion(None)

        result = VisionService(client=client).analyze_myosoku(b"\xff\xd8", "image/jpeg")

        assert not result.ok
