"""
フェーズ定義

カンバンの列となる固定フェーズと、特別な役割を持つフェーズ
（取引台帳連携の終端フェーズ、フォローアップ、AD請求）を定義します。
番号は業務上の標準的な順序を表すだけで、遷移順序は制限しません。
"""
from enum import Enum
from typing import List


class Phase(str, Enum):
    """案件フェーズ"""
    APPLICATION = "①申込連絡"
    VIEWING = "②内見調整"
    SCREENING = "③入居審査"
    IMPORTANT_MATTERS = "④重要事項説明"
    CONTRACT = "⑤契約手続き"
    INITIAL_PAYMENT = "⑥初期費用入金確認"
    KEY_HANDOVER_PREP = "⑦鍵渡し準備"
    MOVE_IN = "⑧入居開始"
    MANAGEMENT = "⑨管理開始"
    CONTRACT_CLOSED = "⑩契約終了"
    FOLLOW_UP = "⑪フォローアップ"
    AD_BILLING = "⑫AD請求/着金"


class Priority(str, Enum):
    """緊急度"""
    HIGH = "高"
    MEDIUM = "中"
    LOW = "低"


class ConnectionMethod(str, Enum):
    """LINE連携方法"""
    QR = "qr"
    AUTO = "auto"
    MANUAL = "manual"
    NONE = "none"


DEFAULT_PHASE = Phase.APPLICATION
TERMINAL_PHASE = Phase.CONTRACT_CLOSED
FOLLOW_UP_PHASE = Phase.FOLLOW_UP
BILLING_PHASE = Phase.AD_BILLING


def all_phases() -> List[Phase]:
    return list(Phase)


def is_terminal(phase: Phase | str) -> bool:
    return phase == TERMINAL_PHASE


def is_follow_up(phase: Phase | str) -> bool:
    return phase == FOLLOW_UP_PHASE


def is_billing(phase: Phase | str) -> bool:
    return phase == BILLING_PHASE
