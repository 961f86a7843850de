"""
外部送信の結果型

LINE・取引台帳・Slack・画像解析など外部システムへの呼び出しは
例外を投げずにDeliveryResultを返します。呼び出し側が結果を見て
ユーザーへの通知やログ出力を判断します（リトライ・ロールバックは行わない）。
"""
from dataclasses import dataclass, field
from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")


@dataclass
class DeliveryError:
    """外部送信エラー"""
    channel: str  # 'line', 'ledger', 'slack', 'vision'
    reason: str
    status_code: Optional[int] = None

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.channel}: {self.reason} (status={self.status_code})"
        return f"{self.channel}: {self.reason}"


@dataclass
class DeliveryResult(Generic[T]):
    """外部送信結果"""
    ok: bool
    value: Optional[T] = None
    error: Optional[DeliveryError] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "DeliveryResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(
        cls, channel: str, reason: str, status_code: Optional[int] = None
    ) -> "DeliveryResult[T]":
        return cls(ok=False, error=DeliveryError(channel, reason, status_code))

    @classmethod
    def not_configured(cls, channel: str) -> "DeliveryResult[T]":
        return cls.failure(channel, "not_configured")


@dataclass
class BatchResult:
    """一括送信の集計"""
    sent: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    sent_ids: List[int] = field(default_factory=list)
