"""
LINE通知サービスのテスト

送信前の検証、名前マッチングによる案件の紐付け、QRコード連携、
候補選択（番号返信・ポストバック）を確認します。
"""
import asyncio
import base64
from unittest.mock import AsyncMock, patch

import pytest

from app.models.deal import DealResponse
from app.models.phase import ConnectionMethod, Phase
from app.services.line_client import LineClient
from app.services.line_service import (
    InboundOutcome,
    LineService,
    OutboundValidationError,
    match_candidates,
)


@pytest.fixture
def service(store, line_api, template_store, pending_store):
    return LineService(store, line_api.client, template_store, pending_store)


def follow_event(user_id: str) -> dict:
    return {"type": "follow", "source": {"type": "user", "userId": user_id}}


def text_event(user_id: str, text: str) -> dict:
    return {
        "type": "message",
        "source": {"type": "user", "userId": user_id},
        "message": {"type": "text", "text": text},
    }


class TestOutboundMessage:

    def test_missing_recipient_is_rejected_without_calling_line(self, service, line_api, make_deal):
        deal = DealResponse.from_record(make_deal())

        with pytest.raises(OutboundValidationError):
            asyncio.run(service.send_manual_message(deal, Phase.SCREENING.value, message="こんにちは"))

        assert line_api.pushes == []

    def test_blank_recipient_override_falls_back_to_bound_id(self, service, line_api, make_deal):
        deal = DealResponse.from_record(make_deal(line_user_id="U1"))

        result = asyncio.run(service.send_manual_message(deal, Phase.SCREENING.value, message="本文", line_user_id=""))

        assert result.ok
        assert line_api.texts_to("U1") == ["本文"]

    def test_template_is_rendered_when_message_is_empty(self, service, line_api, make_deal):
        deal = DealResponse.from_record(make_deal(line_user_id="U1"))

        result = asyncio.run(service.send_manual_message(deal, Phase.SCREENING.value, message="  "))

        assert result.ok
        [text] = line_api.texts_to("U1")
        assert text.startswith("田中太郎様")
        assert "物件名：渋谷区 1LDK マンション" in text

    def test_phase_change_notification_uses_target_phase_template(self, service, line_api, make_deal):
        deal = DealResponse.from_record(make_deal(line_user_id="U1", phase=Phase.KEY_HANDOVER_PREP))

        asyncio.run(service.send_phase_change_notification(deal, Phase.KEY_HANDOVER_PREP.value))

        [text] = line_api.texts_to("U1")
        assert "鍵の引き渡し日が決定しました" in text

    def test_unknown_template_is_rejected(self, service, line_api, make_deal):
        deal = DealResponse.from_record(make_deal(line_user_id="U1"))

        with pytest.raises(OutboundValidationError):
            asyncio.run(service.send_manual_message(deal, "存在しないフェーズ"))

        assert line_api.pushes == []

    def test_delivery_failure_is_returned(self, service, line_api, make_deal):
        line_api.push_status = 500
        deal = DealResponse.from_record(make_deal(line_user_id="U1"))

        result = asyncio.run(service.send_manual_message(deal, Phase.SCREENING.value, message="本文"))

        assert not result.ok
        assert result.error.channel == "line"
        assert result.error.status_code == 500

    def test_unconfigured_channel_returns_failure(self, store, template_store, pending_store, make_deal):
        service = LineService(store, LineClient(access_token=""), template_store, pending_store)
        deal = DealResponse.from_record(make_deal(line_user_id="U1"))

        result = asyncio.run(service.send_manual_message(deal, Phase.SCREENING.value, message="本文"))

        assert not result.ok
        assert result.error.reason == "not_configured"


class TestMatchCandidates:

    def test_containment_in_both_directions(self, make_deal, store):
        make_deal(client="田中太郎")

        assert len(match_candidates("田中", store.list())) == 1
        assert len(match_candidates("田中太郎 様", store.list())) == 1

    def test_matching_is_case_sensitive(self, make_deal, store):
        make_deal(client="Taro Tanaka")

        assert match_candidates("taro tanaka", store.list()) == []

    def test_empty_name_never_matches(self, make_deal, store):
        make_deal(client="田中太郎")

        assert match_candidates("", store.list()) == []
        assert match_candidates("   ", store.list()) == []
        assert match_candidates(None, store.list()) == []


class TestFollowEvent:

    def test_unique_display_name_binds_automatically(self, service, line_api, make_deal, store):
        record = make_deal(client="田中太郎")
        line_api.profiles["U1"] = "田中太郎"

        outcome = asyncio.run(service.handle_follow("U1"))

        assert outcome == InboundOutcome.BOUND_AUTO
        bound = store.get(record.id)
        assert bound.line_user_id == "U1"
        assert bound.line_connection_method == ConnectionMethod.AUTO.value
        assert bound.line_display_name == "田中太郎"
        [text] = line_api.texts_to("U1")
        assert "自動認識" in text
        assert Phase.APPLICATION.value in text

    def test_duplicate_names_present_candidates_without_binding(self, service, line_api, make_deal, store, pending_store):
        first = make_deal(client="Taro Tanaka", title="新宿 2LDK")
        second = make_deal(client="Taro Tanaka", title="池袋 1LDK")
        line_api.profiles["U1"] = "Taro Tanaka"

        outcome = asyncio.run(service.handle_follow("U1"))

        assert outcome == InboundOutcome.CANDIDATES
        assert all(r.line_user_id is None for r in store.list())
        assert len(line_api.pushes) == 1
        [message] = line_api.messages_to("U1")
        items = message["quickReply"]["items"]
        assert [item["action"]["data"] for item in items] == [
            f"action=select_deal&deal_id={first.id}",
            f"action=select_deal&deal_id={second.id}",
            "action=no_match",
        ]
        assert pending_store.get("U1").candidate_ids == [first.id, second.id]

    def test_many_candidates_are_sent_as_numbered_list(self, service, line_api, make_deal):
        for title in ("物件A", "物件B", "物件C", "物件D"):
            make_deal(client="田中太郎", title=title)
        line_api.profiles["U1"] = "田中太郎"

        outcome = asyncio.run(service.handle_follow("U1"))

        assert outcome == InboundOutcome.CANDIDATES
        [message] = line_api.messages_to("U1")
        assert "quickReply" not in message
        assert "4. 田中太郎様 - 物件D" in message["text"]

    def test_no_match_asks_for_registered_name(self, service, line_api, make_deal):
        make_deal(client="佐藤花子")
        line_api.profiles["U1"] = "たろう"

        outcome = asyncio.run(service.handle_follow("U1"))

        assert outcome == InboundOutcome.PROMPT
        [text] = line_api.texts_to("U1")
        assert "フルネーム" in text

    def test_profile_lookup_failure_asks_for_name(self, service, line_api, make_deal):
        make_deal(client="田中太郎")

        outcome = asyncio.run(service.handle_follow("U-unknown"))

        assert outcome == InboundOutcome.PROMPT

    def test_already_bound_user_gets_status_reply(self, service, line_api, make_deal):
        make_deal(client="田中太郎", line_user_id="U1", phase=Phase.CONTRACT)

        outcome = asyncio.run(service.handle_follow("U1"))

        assert outcome == InboundOutcome.STATUS_REPLY
        [text] = line_api.texts_to("U1")
        assert "現在のお手続き状況：⑤契約手続き" in text


class TestQrFollow:

    def test_token_binds_deal_directly(self, service, line_api, make_deal, store):
        record = make_deal(client="田中太郎")
        qr = service.issue_qr_code(record)

        outcome = asyncio.run(service.handle_follow("U1", deal_token=qr.token))

        assert outcome == InboundOutcome.BOUND_QR
        assert store.get(record.id).line_connection_method == ConnectionMethod.QR.value
        # QR連携は名前マッチング用のプロフィール取得を行わない
        assert line_api.texts_to("U1")[0].startswith("田中太郎様、友だち追加ありがとうございます")

    def test_token_for_deal_bound_to_other_user_is_rejected(self, service, line_api, make_deal, store):
        record = make_deal(line_user_id="U-other")
        qr = service.issue_qr_code(record)

        outcome = asyncio.run(service.handle_follow("U1", deal_token=qr.token))

        assert outcome == InboundOutcome.REJECTED
        assert store.get(record.id).line_user_id == "U-other"

    def test_unknown_token_is_not_found(self, service, line_api):
        outcome = asyncio.run(service.handle_follow("U1", deal_token="no-such-token"))

        assert outcome == InboundOutcome.NOT_FOUND

    def test_issue_qr_code_reuses_token(self, service, make_deal):
        record = make_deal()

        first = service.issue_qr_code(record)
        second = service.issue_qr_code(record)

        assert first.token == second.token
        assert first.url == f"https://line.me/R/ti/p/@test-bot?deal={first.token}"

    def test_issue_qr_code_renders_png_image(self, service, make_deal):
        response = service.issue_qr_code(make_deal())

        assert response.qr_code_data_url.startswith("data:image/png;base64,")
        png = base64.b64decode(response.qr_code_data_url.split(",", 1)[1])
        assert png[:8] == b"\x89PNG\r\n\x1a\n"


class TestPendingSelection:

    @pytest.fixture
    def two_candidates(self, service, line_api, make_deal):
        first = make_deal(client="田中太郎", title="新宿 2LDK")
        second = make_deal(client="田中花子", title="池袋 1LDK")
        outcome = asyncio.run(service.handle_text_message("U1", "田中"))
        assert outcome == InboundOutcome.CANDIDATES
        return first, second

    def test_free_text_candidates_are_numbered(self, two_candidates, line_api):
        [text] = line_api.texts_to("U1")

        assert "1. 田中太郎様 - 新宿 2LDK" in text
        assert "2. 田中花子様 - 池袋 1LDK" in text
        assert "該当なし" in text

    def test_number_reply_binds_candidate(self, service, two_candidates, store, pending_store):
        _, second = two_candidates

        outcome = asyncio.run(service.handle_text_message("U1", "2"))

        assert outcome == InboundOutcome.BOUND_MANUAL
        bound = store.get(second.id)
        assert bound.line_user_id == "U1"
        assert bound.line_connection_method == ConnectionMethod.MANUAL.value
        assert pending_store.get("U1") is None

    def test_no_match_reply_clears_and_prompts(self, service, two_candidates, line_api, pending_store):
        outcome = asyncio.run(service.handle_text_message("U1", "該当なし"))

        assert outcome == InboundOutcome.PROMPT
        assert pending_store.get("U1") is None
        assert "フルネーム" in line_api.texts_to("U1")[-1]

    def test_out_of_range_number_falls_through_to_name_matching(self, service, two_candidates, store):
        outcome = asyncio.run(service.handle_text_message("U1", "7"))

        assert outcome == InboundOutcome.PROMPT
        assert all(r.line_user_id is None for r in store.list())

    def test_postback_selection_binds_manually(self, service, two_candidates, store):
        first, _ = two_candidates

        outcome = asyncio.run(service.handle_postback("U1", f"action=select_deal&deal_id={first.id}"))

        assert outcome == InboundOutcome.BOUND_MANUAL
        assert store.get(first.id).line_user_id == "U1"

    def test_postback_for_deal_bound_to_other_user_is_rejected(self, service, make_deal, store, pending_store):
        record = make_deal(line_user_id="U-other")
        pending_store.put("U1", [record.id])

        outcome = asyncio.run(service.handle_postback("U1", f"action=select_deal&deal_id={record.id}"))

        assert outcome == InboundOutcome.REJECTED
        assert store.get(record.id).line_user_id == "U-other"

    def test_postback_from_bound_user_gets_status_reply(self, service, line_api, make_deal, store):
        """連携済みのユーザーは別の案件を選択できない"""
        bound = make_deal(client="田中太郎", line_user_id="U1")
        other = make_deal(client="佐藤花子")

        outcome = asyncio.run(service.handle_postback("U1", f"action=select_deal&deal_id={other.id}"))

        assert outcome == InboundOutcome.STATUS_REPLY
        assert store.get(bound.id).line_user_id == "U1"
        assert store.get(other.id).line_user_id is None
        assert "現在のお手続き状況" in line_api.texts_to("U1")[-1]

    def test_postback_for_deal_not_offered_is_ignored(self, service, two_candidates, make_deal, store, pending_store):
        outsider = make_deal(client="佐藤花子")

        outcome = asyncio.run(service.handle_postback("U1", f"action=select_deal&deal_id={outsider.id}"))

        assert outcome == InboundOutcome.NOT_FOUND
        assert all(r.line_user_id is None for r in store.list())
        assert pending_store.get("U1") is not None

    def test_postback_without_pending_selection_is_ignored(self, service, line_api, make_deal, store):
        record = make_deal()

        outcome = asyncio.run(service.handle_postback("U1", f"action=select_deal&deal_id={record.id}"))

        assert outcome == InboundOutcome.NOT_FOUND
        assert store.get(record.id).line_user_id is None
        assert "フルネーム" in line_api.texts_to("U1")[-1]

    def test_non_ascii_digit_reply_falls_through_to_name_matching(self, service, two_candidates, store):
        outcome = asyncio.run(service.handle_text_message("U1", "²"))

        assert outcome == InboundOutcome.PROMPT
        assert all(r.line_user_id is None for r in store.list())

    def test_postback_no_match_prompts(self, service, two_candidates, pending_store):
        outcome = asyncio.run(service.handle_postback("U1", "action=no_match"))

        assert outcome == InboundOutcome.PROMPT
        assert pending_store.get("U1") is None


class TestHandleWebhook:

    def test_processes_events_with_user_source(self, service, line_api, make_deal):
        make_deal(client="田中太郎")
        body = {
            "events": [
                text_event("U1", "田中太郎"),
                {"type": "follow", "source": {"type": "group"}},
                {"type": "unfollow", "source": {"type": "user", "userId": "U2"}},
            ]
        }

        processed = asyncio.run(service.handle_webhook(body))

        assert processed == 2
        assert "自動認識" in line_api.texts_to("U1")[0]

    def test_event_error_sends_apology_and_continues(self, service, line_api):
        body = {"events": [follow_event("U1"), follow_event("U2")]}

        with patch.object(service, "handle_event", AsyncMock(side_effect=RuntimeError("boom"))):
            processed = asyncio.run(service.handle_webhook(body))

        assert processed == 2
        assert "システムエラー" in line_api.texts_to("U1")[0]
        assert "システムエラー" in line_api.texts_to("U2")[0]


class TestConnectionSummary:

    def test_counts_by_method(self, service, make_deal, store):
        qr_deal = make_deal()
        store.bind_line_user(qr_deal, "U1", ConnectionMethod.QR)
        make_deal(line_user_id="U2")
        make_deal()
        make_deal()

        summary = service.connection_summary()

        assert summary.total_deals == 4
        assert summary.connected_count == 2
        assert summary.qr_count == 1
        assert summary.manual_count == 1
        assert summary.auto_count == 0
        assert summary.connection_rate == 50.0
        assert len(summary.unconnected_deals) == 2
