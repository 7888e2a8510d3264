"""Trading strategy model and its buy/sell rules."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class Indicator(str, Enum):
    """Indicators a strategy can combine."""

    MFI = "MFI"
    RSI = "RSI"
    MACD = "MACD"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Strategy(BaseModel):
    """Named set of indicator thresholds plus risk parameters.

    Entries require every enabled indicator to agree (AND), exits fire on
    any single indicator (OR). Indicators whose value is missing for the
    current bar are skipped rather than counted as a vote.
    """

    name: str
    indicators: set[Indicator] = Field(default_factory=lambda: {Indicator.MFI})

    # MFI
    mfi_buy_threshold: float = 20.0
    mfi_sell_threshold: float = 80.0
    mfi_period: int = Field(default=14, ge=1)

    # RSI
    rsi_buy_threshold: float = 30.0
    rsi_sell_threshold: float = 70.0
    rsi_period: int = Field(default=14, ge=1)

    # MACD
    macd_short_period: int = Field(default=12, ge=1)
    macd_long_period: int = Field(default=26, ge=1)
    macd_signal_period: int = Field(default=9, ge=1)

    # Risk management (percent)
    stop_loss_percent: float = Field(default=5.0, ge=0)
    take_profit_percent: float = Field(default=10.0, ge=0)
    allocation_percent: float = Field(default=10.0, gt=0, le=100)

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    is_active: bool = False

    @model_validator(mode="after")
    def _check_macd_periods(self) -> "Strategy":
        if self.macd_short_period >= self.macd_long_period:
            raise ValueError("macd_short_period must be smaller than macd_long_period")
        return self

    def uses(self, indicator: Indicator) -> bool:
        return indicator in self.indicators

    def should_buy(
        self,
        mfi: float | None,
        rsi: float | None,
        macd: float | None,
        macd_signal: float | None,
    ) -> bool:
        """Return True when every evaluated indicator signals a buy."""
        votes: list[bool] = []

        if self.uses(Indicator.MFI) and mfi is not None:
            votes.append(mfi <= self.mfi_buy_threshold)
        if self.uses(Indicator.RSI) and rsi is not None:
            votes.append(rsi <= self.rsi_buy_threshold)
        if self.uses(Indicator.MACD) and macd is not None and macd_signal is not None:
            votes.append(macd > macd_signal)

        return bool(votes) and all(votes)

    def should_sell(
        self,
        mfi: float | None,
        rsi: float | None,
        macd: float | None,
        macd_signal: float | None,
    ) -> bool:
        """Return True when any evaluated indicator signals a sell."""
        if self.uses(Indicator.MFI) and mfi is not None and mfi >= self.mfi_sell_threshold:
            return True
        if self.uses(Indicator.RSI) and rsi is not None and rsi >= self.rsi_sell_threshold:
            return True
        if (
            self.uses(Indicator.MACD)
            and macd is not None
            and macd_signal is not None
            and macd < macd_signal
        ):
            return True
        return False

    def clone(self) -> "Strategy":
        """Return an independent copy suitable for editing as a new strategy."""
        now = _utcnow()
        return self.model_copy(
            update={
                "name": f"{self.name} (copy)",
                "indicators": set(self.indicators),
                "created_at": now,
                "updated_at": now,
                "is_active": False,
            },
            deep=True,
        )

    def touch(self) -> None:
        """Mark the strategy as modified now."""
        self.updated_at = _utcnow()

    # -- Templates -----------------------------------------------------------

    @classmethod
    def conservative(cls) -> "Strategy":
        return cls(
            name="Conservative",
            indicators={Indicator.MFI},
            mfi_buy_threshold=20.0,
            mfi_sell_threshold=80.0,
            stop_loss_percent=5.0,
            take_profit_percent=10.0,
            allocation_percent=10.0,
        )

    @classmethod
    def aggressive(cls) -> "Strategy":
        return cls(
            name="Aggressive",
            indicators={Indicator.MFI},
            mfi_buy_threshold=30.0,
            mfi_sell_threshold=70.0,
            stop_loss_percent=10.0,
            take_profit_percent=15.0,
            allocation_percent=20.0,
        )

    @classmethod
    def macd(cls) -> "Strategy":
        return cls(
            name="MACD Basic",
            indicators={Indicator.MACD},
            stop_loss_percent=5.0,
            take_profit_percent=10.0,
            allocation_percent=15.0,
        )

    @classmethod
    def combined(cls) -> "Strategy":
        return cls(
            name="MFI + RSI",
            indicators={Indicator.MFI, Indicator.RSI},
            mfi_buy_threshold=25.0,
            mfi_sell_threshold=75.0,
            rsi_buy_threshold=35.0,
            rsi_sell_threshold=65.0,
            stop_loss_percent=7.0,
            take_profit_percent=12.0,
            allocation_percent=15.0,
        )

    @classmethod
    def templates(cls) -> list["Strategy"]:
        """All built-in templates, freshly constructed."""
        return [cls.conservative(), cls.aggressive(), cls.macd(), cls.combined()]
