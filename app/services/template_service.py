"""
LINEメッセージテンプレート管理サービス

フェーズ名（または「カスタム」）をキーにテンプレートを保持し、
案件の情報でプレースホルダーを置換したメッセージ本文を生成します。
テンプレートは運用中に編集可能で、案件DBとは別にJSONファイルへ保存します。
"""
import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel

from app.config import settings
from app.models.deal import DealResponse
from app.models.phase import Phase

logger = logging.getLogger(__name__)

CUSTOM_TEMPLATE_KEY = "カスタム"

DEFAULT_TEMPLATES: Dict[str, str] = {
    Phase.APPLICATION.value: """{clientName}様

この度は、お申し込みをいただきありがとうございます。
書類を確認させていただき、内覧の調整をいたします。

お忙しい中恐れ入りますが、今しばらくお待ちください。""",

    Phase.VIEWING.value: """{clientName}様

お世話になっております。
内覧の調整が完了いたしました。

詳細は以下になります。
日時：
内覧の順番
◯時◯分　住所に集合、物件1を内覧
◯時◯分　住所に移動、物件2を内覧
◯時◯分　住所に移動、物件3を内覧

内覧前に測っておくと便利な項目をお送りします。
- 冷蔵庫、洗濯機の縦、横、奥行き
- ベッドの縦、横、奥行き
- 食洗機等、特定の家具で必ず持っていきたいもの縦、横、奥行き

{clientName}様に当日お会いできることを楽しみにしております。

お気をつけてお越しくださいませ。""",

    Phase.SCREENING.value: """{clientName}様

先日はお忙しい中、内覧をいただきありがとうございました。

現在、以下の物件の審査を進めております。
物件名：{propertyName}

通常ですと、審査の結果は3〜5営業日で行われます。
結果がわかり次第、すぐにご連絡をいたします。

引き続き、よろしくお願いします。""",

    Phase.IMPORTANT_MATTERS.value: """{clientName}様

お世話になっております。
無事、審査が通りました。おめでとうございます！

ここからの流れなのですが、重要事項説明と契約を行い、初期費用の入金をいただきます。
その後、鍵の引き渡しを行い、完了となります。

重要事項説明と契約の実施住所：
Google Map：

初期費用のご請求書は以下です。

契約が完了しましたら、まずはライフラインの変更 / 新規回線手続きをおすすめいたします。
お手続きのチェックリスト：{customerChecklistUrl}

もしもご入居や退去の際にわからないことがありましたら、いつでもお気軽にお問い合わせください。

よろしくお願いします。""",

    Phase.CONTRACT.value: """{clientName}様

契約手続きに関するご連絡です。

詳細について別途ご連絡いたします。""",

    Phase.INITIAL_PAYMENT.value: """{clientName}様

お世話になっております。
初期費用の着金確認が取れました。
お忙しい中、ありがとうございます。

ここからの流れなのですが、重要事項説明と契約を行い、その後、鍵の引き渡しを行い、完了となります。

契約が完了しましたら、まずはライフラインの変更 / 新規回線手続きをおすすめいたします。

もしもご入居や退去の際にわからないことがありましたら、いつでもお気軽にお問い合わせください。

よろしくお願いします。""",

    Phase.KEY_HANDOVER_PREP.value: """{clientName}様

お世話になっております。

本日管理会社から連絡があり、鍵の引き渡し日が決定しました。
日時：

場所に関しては物件下、もしくは{clientName}様のご希望の場所にてお渡しができるのですが、いかがいたしましょうか。

お返事、お待ちしております。""",

    Phase.MOVE_IN.value: """🌟 ご入居おめでとうございます！

{clientName}様、新居での生活はいかがですか？

🔧 何かお困りのことがございましたら：
• 水漏れ・電気トラブル
• 設備の不具合
• その他ご質問

24時間サポート対応いたします。""",

    Phase.CONTRACT_CLOSED.value: """{clientName}様

本日ご入居、おめでとうございます！

私からささやかなお祝いをお送りさせていただきます。

もしもわからないこと等ありましたら、いつでもお気軽にご連絡ください。

今後とも、よろしくお願いします。""",

    Phase.FOLLOW_UP.value: """💡 アフターサービスのご案内

{clientName}様、いつもお世話になっております。

🔌 おすすめサービス：
• 電気・ガス・水道の契約サポート
• インターネット回線のご紹介
• 引越し業者のご紹介

🎁 お住まいいただきありがとうございます！
心ばかりの品をお送りいたします。""",

    Phase.AD_BILLING.value: """💰 お取引完了のお知らせ

{clientName}様とのお取引が正式に完了いたしました。

✅ 全ての手続きが完了
💳 お支払いも確認いたしました

今後ともどうぞよろしくお願いいたします。""",

    CUSTOM_TEMPLATE_KEY: """{clientName}様

こちらにメッセージを入力してください。""",
}


class MessageTemplate(BaseModel):
    """メッセージテンプレート"""
    name: str
    template: str
    is_default: bool = False


def build_placeholder_values(deal: DealResponse) -> Dict[str, str]:
    """プレースホルダーと置換値の対応表"""
    due = deal.due_date
    checklist_url = deal.customer_checklist_url or settings.CUSTOMER_CHECKLIST_URL
    return {
        "{clientName}": deal.client or "お客様",
        "{propertyName}": deal.title or "物件",
        "{dueDate}": f"{due.year}/{due.month}/{due.day}" if due else "",
        "{phase}": deal.phase.value if deal.phase else "",
        "{priority}": deal.priority.value if deal.priority else "",
        "{customerChecklistUrl}": checklist_url or "",
    }


def render_template(template: str, deal: DealResponse) -> str:
    """
    テンプレートのプレースホルダーを案件の値で置換する

    既知のプレースホルダーはすべての出現箇所を置換し、
    未知のプレースホルダーはそのまま残します。
    """
    result = template
    for placeholder, value in build_placeholder_values(deal).items():
        result = result.replace(placeholder, value)
    return result


class TemplateStore:
    """テンプレートの保持と永続化"""

    def __init__(self, path: Optional[str] = None):
        self._lock = threading.Lock()
        self._path = Path(path) if path else None
        self._templates: Dict[str, str] = dict(DEFAULT_TEMPLATES)
        self._load()

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                saved = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load templates from {self._path}: {e}")
            return
        if isinstance(saved, dict):
            self._templates = {str(k): str(v) for k, v in saved.items()}
            logger.info(f"Templates loaded from {self._path} ({len(self._templates)} templates)")

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "w", encoding="utf-8") as f:
            json.dump(self._templates, f, ensure_ascii=False, indent=2)

    def list_templates(self) -> List[MessageTemplate]:
        with self._lock:
            return [
                MessageTemplate(name=name, template=body, is_default=name in DEFAULT_TEMPLATES)
                for name, body in self._templates.items()
            ]

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._templates.get(key)

    def set(self, key: str, template: str) -> MessageTemplate:
        with self._lock:
            self._templates[key] = template
            self._save()
        logger.info(f"Template saved: {key}")
        return MessageTemplate(name=key, template=template, is_default=key in DEFAULT_TEMPLATES)

    def delete(self, key: str) -> bool:
        with self._lock:
            if key not in self._templates:
                return False
            del self._templates[key]
            self._save()
        logger.info(f"Template deleted: {key}")
        return True

    def reset_defaults(self) -> None:
        with self._lock:
            self._templates = dict(DEFAULT_TEMPLATES)
            self._save()
        logger.info("Templates reset to defaults")

    def render(self, key: str, deal: DealResponse) -> Optional[str]:
        """キーのテンプレートを案件で展開（テンプレートがなければNone）"""
        template = self.get(key)
        if template is None:
            return None
        return render_template(template, deal)


# シングルトンインスタンス
_template_store: Optional[TemplateStore] = None


def get_template_store() -> TemplateStore:
    """TemplateStoreのシングルトンインスタンスを取得"""
    global _template_store
    if _template_store is None:
        _template_store = TemplateStore(settings.MESSAGE_TEMPLATES_PATH)
    return _template_store
