# -*- coding: utf-8 -*-
"""
Core Configuration Settings for RiskPilot
=========================================

Pydantic-based configuration management with validation, YAML loading and
environment variable support. Every section is validated as a whole: updates
go through ``apply_update`` and are either applied completely or rejected.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, TypeVar

import yaml
from pydantic import BaseModel, Field, ValidationError, validator


class ConfigurationError(Exception):
    """Raised when a configuration update is rejected."""
    pass


class RiskTolerance(str, Enum):
    """Investor risk tolerance"""

    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class RiskConfig(BaseModel):
    """Exit engine parameters: stops, factor weights, indicator lookbacks"""

    # Stops
    initial_atr_mult: float = Field(2.0, description="Initial stop distance in ATR multiples")
    chandelier_mult: float = Field(3.0, description="Chandelier stop distance in ATR multiples")
    chandelier_lookback: int = Field(22, description="Bars used for the chandelier extreme")
    atr_length: int = Field(14, description="ATR smoothing length")

    # Composite factor weights
    w_momentum: float = Field(0.22, description="Momentum reversal weight")
    w_vol_expansion: float = Field(0.18, description="Volatility expansion weight")
    w_rsi_stress: float = Field(0.18, description="RSI stress weight")
    w_structure_break: float = Field(0.22, description="Structure break weight")
    w_drawdown: float = Field(0.12, description="Drawdown from peak R weight")
    w_time: float = Field(0.08, description="Elapsed time weight")

    exit_threshold: float = Field(0.70, description="Composite score that triggers an exit")

    # Momentum
    ema_fast: int = Field(8, description="Fast EMA length")
    ema_slow: int = Field(21, description="Slow EMA length")

    # Volatility expansion
    vol_window: int = Field(50, description="ATR percentile rank window")
    vol_pct_for_exit: float = Field(0.70, description="ATR percentile rank flagged as expansion")

    # RSI stress
    rsi_len: int = Field(14, description="RSI length")
    rsi_exit_long: float = Field(30.0, description="RSI level where long stress begins")
    rsi_exit_short: float = Field(70.0, description="RSI level where short stress begins")
    rsi_stress_band: float = Field(20.0, description="RSI points from stress level to full stress")

    # Structure, drawdown, time
    structure_lookback: int = Field(10, description="Bars defining the structure extreme")
    max_intrade_drawdown_r: float = Field(0.75, description="Giveback in R that saturates the drawdown factor")
    max_bars_in_trade: int = Field(200, description="Bars that saturate the time factor")

    enable_scale_outs: bool = Field(True, description="Enable partial take-profits")
    min_bars_for_indicators: int = Field(30, description="Minimum bars before indicators are trusted")

    # Portfolio emergency check
    panic_threshold: float = Field(0.85, description="Fraction of bearish instruments that triggers panic")
    panic_bearish_signals: int = Field(4, description="Bearish signal count marking an instrument as panicked")
    forced_exit_bearish_signals: int = Field(3, description="Bearish signal count forcing an exit during panic")

    @validator('w_momentum', 'w_vol_expansion', 'w_rsi_stress',
               'w_structure_break', 'w_drawdown', 'w_time')
    def validate_weight(cls, v):
        if not 0.0 <= v <= 1.0:
            raise ValueError('factor weights must be between 0 and 1')
        return v

    @validator('exit_threshold', 'panic_threshold')
    def validate_threshold(cls, v):
        if not 0.0 < v <= 1.0:
            raise ValueError('thresholds must be in (0, 1]')
        return v

    @validator('vol_pct_for_exit')
    def validate_vol_pct(cls, v):
        if not 0.0 <= v <= 1.0:
            raise ValueError('vol_pct_for_exit must be between 0 and 1')
        return v

    @validator('chandelier_lookback', 'atr_length', 'vol_window', 'rsi_len', 'ema_fast',
               'structure_lookback', 'max_bars_in_trade', 'min_bars_for_indicators')
    def validate_lookback(cls, v):
        if v < 1:
            raise ValueError('lookback lengths must be at least 1')
        return v

    @validator('ema_slow')
    def validate_ema_slow(cls, v, values):
        if v < 2:
            raise ValueError('ema_slow must be at least 2')
        fast = values.get('ema_fast')
        if fast is not None and v <= fast:
            raise ValueError('ema_slow must be longer than ema_fast')
        return v

    @validator('initial_atr_mult', 'chandelier_mult', 'max_intrade_drawdown_r', 'rsi_stress_band')
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError('multipliers and bands must be positive')
        return v

    @validator('rsi_exit_long', 'rsi_exit_short')
    def validate_rsi_level(cls, v):
        if not 0 <= v <= 100:
            raise ValueError('RSI levels must be between 0 and 100')
        return v

    @validator('forced_exit_bearish_signals')
    def validate_forced_exit_signals(cls, v):
        if v < 0:
            raise ValueError('forced_exit_bearish_signals cannot be negative')
        return v


class AISettings(BaseModel):
    """Allocation settings for new entries"""

    risk_tolerance: RiskTolerance = Field(RiskTolerance.MODERATE, description="Investor risk tolerance")
    investment_amount: float = Field(100_000.0, description="Capital available for allocation")
    strategies: List[str] = Field(default_factory=lambda: ["momentum", "value", "sentiment"])
    rebalance_frequency: str = Field("daily", description="Rebalance cadence")
    max_positions: int = Field(6, description="Maximum simultaneous allocations")

    sector_allocation_limits: Dict[str, float] = Field(
        default_factory=lambda: {
            "Technology": 0.4,
            "Consumer": 0.3,
            "Automotive": 0.2,
            "Healthcare": 0.3,
            "Financial": 0.25,
        },
        description="Maximum portfolio weight per sector"
    )
    default_sector_limit: float = Field(0.4, description="Limit for sectors not listed above")
    max_position_fraction: float = Field(0.3, description="Share of remaining weight one position may take")
    min_allocation_weight: float = Field(0.02, description="Allocations at or below this are dropped")

    enable_stop_loss: bool = Field(True, description="Attach stop-loss prices to entries")
    stop_loss_percent: float = Field(8.0, description="Stop-loss distance in percent")
    enable_take_profit: bool = Field(True, description="Attach take-profit prices to entries")
    take_profit_percent: float = Field(15.0, description="Take-profit distance in percent")
    max_drawdown_percent: float = Field(20.0, description="Maximum tolerated portfolio drawdown")

    @validator('investment_amount')
    def validate_investment_amount(cls, v):
        if v <= 0:
            raise ValueError('investment_amount must be positive')
        return v

    @validator('max_positions')
    def validate_max_positions(cls, v):
        if not 1 <= v <= 50:
            raise ValueError('max_positions must be between 1 and 50')
        return v

    @validator('rebalance_frequency')
    def validate_rebalance_frequency(cls, v):
        allowed = ['daily', 'weekly', 'monthly']
        if v not in allowed:
            raise ValueError(f'rebalance_frequency must be one of {allowed}')
        return v

    @validator('sector_allocation_limits')
    def validate_sector_limits(cls, v):
        for sector, limit in v.items():
            if not 0.0 < limit <= 1.0:
                raise ValueError(f'sector limit for {sector} must be in (0, 1]')
        return v

    @validator('default_sector_limit', 'max_position_fraction')
    def validate_fraction(cls, v):
        if not 0.0 < v <= 1.0:
            raise ValueError('fractions must be in (0, 1]')
        return v

    @validator('min_allocation_weight')
    def validate_min_allocation_weight(cls, v):
        if not 0.0 <= v < 0.5:
            raise ValueError('min_allocation_weight must be between 0 and 0.5')
        return v

    @validator('stop_loss_percent')
    def validate_stop_loss_percent(cls, v):
        if not 1 <= v <= 50:
            raise ValueError('stop_loss_percent must be between 1% and 50%')
        return v

    @validator('take_profit_percent')
    def validate_take_profit_percent(cls, v):
        if not 1 <= v <= 200:
            raise ValueError('take_profit_percent must be between 1% and 200%')
        return v

    @validator('max_drawdown_percent')
    def validate_max_drawdown_percent(cls, v):
        if not 1 <= v <= 100:
            raise ValueError('max_drawdown_percent must be between 1% and 100%')
        return v

    def sector_limit(self, sector: str) -> float:
        """Weight limit for a sector"""
        return self.sector_allocation_limits.get(sector, self.default_sector_limit)


class StopLossSettings(BaseModel):
    """Protective order settings for the position monitor"""

    enable_stop_loss: bool = Field(True, description="Evaluate regular stop-loss levels")
    default_stop_loss_percent: float = Field(8.0, description="Default stop-loss distance (%)")
    enable_take_profit: bool = Field(True, description="Attach take-profit levels")
    default_take_profit_percent: float = Field(15.0, description="Default take-profit distance (%)")
    enable_trailing_stop: bool = Field(True, description="Trail stops behind new highs")
    default_trailing_stop_percent: float = Field(10.0, description="Default trailing distance (%)")
    max_loss_per_position: float = Field(5_000.0, description="Maximum loss per position in currency")
    emergency_stop_percent: float = Field(20.0, description="Loss (%) that forces an exit regardless of stops")
    auto_rebalance_after_trigger: bool = Field(True, description="Request a rebalance after a trigger")

    @validator('default_stop_loss_percent')
    def validate_stop_loss_percent(cls, v):
        if not 1 <= v <= 50:
            raise ValueError('default_stop_loss_percent must be between 1% and 50%')
        return v

    @validator('default_take_profit_percent')
    def validate_take_profit_percent(cls, v):
        if not 1 <= v <= 200:
            raise ValueError('default_take_profit_percent must be between 1% and 200%')
        return v

    @validator('default_trailing_stop_percent')
    def validate_trailing_percent(cls, v):
        if not 1 <= v <= 50:
            raise ValueError('default_trailing_stop_percent must be between 1% and 50%')
        return v

    @validator('max_loss_per_position')
    def validate_max_loss(cls, v):
        if v <= 0:
            raise ValueError('max_loss_per_position must be positive')
        return v

    @validator('emergency_stop_percent')
    def validate_emergency_percent(cls, v, values):
        if not 1 <= v <= 100:
            raise ValueError('emergency_stop_percent must be between 1% and 100%')
        stop = values.get('default_stop_loss_percent')
        if stop is not None and v < stop:
            raise ValueError('emergency_stop_percent cannot be tighter than default_stop_loss_percent')
        return v


class ScreeningThresholds(BaseModel):
    """Screening gate thresholds and technical analysis parameters"""

    # Fundamental gate
    min_eps_growth: float = Field(0.25, description="Minimum EPS growth (fraction)")
    min_roe: float = Field(0.17, description="Minimum return on equity (fraction)")
    min_sales_growth: float = Field(0.20, description="Minimum sales growth (fraction)")
    max_pe: float = Field(40.0, description="Maximum price/earnings ratio")
    max_debt_to_equity: float = Field(1.0, description="Maximum debt/equity ratio")
    min_current_ratio: float = Field(1.0, description="Minimum current ratio")
    min_operating_margin: float = Field(0.10, description="Operating margin earning a rubric point")

    # Technical gate
    rsi_max: float = Field(75.0, description="Maximum RSI to pass the gate")
    rsi_band_low: float = Field(40.0, description="Lower bound of the healthy RSI band")
    rsi_band_high: float = Field(70.0, description="Upper bound of the healthy RSI band")
    rsi_bearish_level: float = Field(40.0, description="RSI below this counts as a bearish signal")
    trend_strength_threshold: float = Field(0.6, description="Minimum trend strength (0-1)")

    # Technical analysis parameters
    rsi_period: int = Field(14, description="RSI period")
    breakout_lookback: int = Field(20, description="Bars defining the breakout high")
    volume_surge_multiplier: float = Field(1.5, description="Volume multiple of average that counts as a surge")
    volume_average_period: int = Field(20, description="Volume average period")
    trend_lookback: int = Field(20, description="Closes used for the trend fit")
    ma_short: int = Field(20, description="Short moving average")
    ma_long: int = Field(50, description="Long moving average")
    min_history_bars: int = Field(30, description="Bars required for the full technical model")

    # Simplified model (quote only)
    breakout_change_pct: float = Field(3.0, description="Day change (%) treated as a breakout without history")
    simplified_volume_surge: int = Field(2_000_000, description="Volume treated as a surge without history")

    bearish_change_pct: float = Field(-2.0, description="Day change (%) counted as a bearish signal")

    @validator('min_eps_growth', 'min_roe', 'min_sales_growth')
    def validate_growth(cls, v):
        if not -1.0 <= v <= 5.0:
            raise ValueError('growth thresholds must be fractions between -1 and 5')
        return v

    @validator('max_pe', 'max_debt_to_equity', 'volume_surge_multiplier')
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError('value must be positive')
        return v

    @validator('rsi_max', 'rsi_band_low', 'rsi_band_high', 'rsi_bearish_level')
    def validate_rsi(cls, v):
        if not 0 <= v <= 100:
            raise ValueError('RSI levels must be between 0 and 100')
        return v

    @validator('rsi_band_high')
    def validate_rsi_band(cls, v, values):
        low = values.get('rsi_band_low')
        if low is not None and v <= low:
            raise ValueError('rsi_band_high must be above rsi_band_low')
        return v

    @validator('trend_strength_threshold')
    def validate_trend_strength(cls, v):
        if not 0 <= v <= 1:
            raise ValueError('trend_strength_threshold must be between 0 and 1')
        return v

    @validator('rsi_period', 'breakout_lookback', 'volume_average_period', 'trend_lookback',
               'ma_short', 'ma_long', 'min_history_bars')
    def validate_period(cls, v):
        if v < 2:
            raise ValueError('periods must be at least 2')
        return v


class DataConfig(BaseModel):
    """Market data provider configuration"""

    providers: List[str] = Field(
        default_factory=lambda: ["yahoo", "twelvedata", "alpha_vantage", "finnhub"],
        description="Providers in priority order"
    )
    request_timeout_seconds: float = Field(10.0, description="Bound on a single provider call")
    history_lookback: int = Field(120, description="Bars requested for historical series")
    max_workers: int = Field(8, description="Thread pool size for provider calls")

    allow_synthetic_fallback: bool = Field(False, description="Use synthetic data when every real provider fails")
    synthetic_seed: int = Field(42, description="Seed for the synthetic provider")

    twelvedata_api_key: Optional[str] = Field(None, description="Twelve Data API key")
    alpha_vantage_api_key: Optional[str] = Field(None, description="Alpha Vantage API key")
    finnhub_api_key: Optional[str] = Field(None, description="Finnhub API key")

    @validator('providers')
    def validate_providers(cls, v):
        allowed = ['yahoo', 'twelvedata', 'alpha_vantage', 'finnhub', 'synthetic']
        for name in v:
            if name not in allowed:
                raise ValueError(f'provider must be one of {allowed}, got {name}')
        return v

    @validator('request_timeout_seconds')
    def validate_timeout(cls, v):
        if not 0 < v <= 120:
            raise ValueError('request_timeout_seconds must be between 0 and 120')
        return v

    @validator('history_lookback', 'max_workers')
    def validate_count(cls, v):
        if v < 1:
            raise ValueError('value must be at least 1')
        return v


class SchedulingConfig(BaseModel):
    """Periodic loop configuration"""

    analysis_interval_seconds: int = Field(60, description="Analysis/allocation cycle interval")
    monitor_interval_seconds: int = Field(10, description="Position monitor tick interval")
    timezone: str = Field("America/New_York", description="Timezone for scheduling")

    @validator('analysis_interval_seconds', 'monitor_interval_seconds')
    def validate_interval(cls, v):
        if v < 1:
            raise ValueError('intervals must be at least one second')
        return v


class EngineConfig(BaseModel):
    """Main engine configuration"""

    risk: RiskConfig = RiskConfig()
    ai: AISettings = AISettings()
    stop_loss: StopLossSettings = StopLossSettings()
    screening: ScreeningThresholds = ScreeningThresholds()
    data: DataConfig = DataConfig()
    scheduling: SchedulingConfig = SchedulingConfig()

    universe: List[str] = Field(
        default_factory=lambda: ["AAPL", "TSLA", "NVDA", "MSFT", "AMZN", "GOOGL"],
        description="Instruments screened every cycle"
    )
    sector_map: Dict[str, str] = Field(
        default_factory=lambda: {
            "AAPL": "Technology",
            "TSLA": "Automotive",
            "NVDA": "Technology",
            "MSFT": "Technology",
            "AMZN": "Consumer",
            "GOOGL": "Technology",
        },
        description="Fallback sector lookup when providers have none"
    )

    @validator('universe')
    def validate_universe(cls, v):
        if not v:
            raise ValueError('universe cannot be empty')
        return [symbol.strip().upper() for symbol in v]

    def load_from_yaml(self, config_path: Path) -> 'EngineConfig':
        """Load configuration from YAML file"""
        if config_path.exists():
            with open(config_path, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f) or {}
            return self.__class__(**config_data)
        return self

    def load_from_env(self) -> 'EngineConfig':
        """Load API keys and capital overrides from environment variables"""
        env_updates: Dict[str, Any] = {}

        key_vars = {
            'TWELVEDATA_API_KEY': 'twelvedata_api_key',
            'ALPHA_VANTAGE_API_KEY': 'alpha_vantage_api_key',
            'FINNHUB_API_KEY': 'finnhub_api_key',
        }
        for env_var, field_name in key_vars.items():
            if value := os.getenv(env_var):
                env_updates.setdefault('data', {})[field_name] = value

        if amount := os.getenv('RISKPILOT_INVESTMENT_AMOUNT'):
            try:
                env_updates.setdefault('ai', {})['investment_amount'] = float(amount)
            except ValueError:
                pass  # Keep configured value

        if env_updates:
            current_dict = self.dict()
            for key, value in env_updates.items():
                current_dict[key].update(value)
            return self.__class__(**current_dict)

        return self

    def save_to_yaml(self, config_path: Path) -> None:
        """Save configuration to YAML file (excluding API keys)"""
        config_dict = self.dict()

        for field_name in ('twelvedata_api_key', 'alpha_vantage_api_key', 'finnhub_api_key'):
            config_dict['data'].pop(field_name, None)
        config_dict['ai']['risk_tolerance'] = self.ai.risk_tolerance.value

        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_dict, f, default_flow_style=False, allow_unicode=True)


ModelT = TypeVar('ModelT', bound=BaseModel)


def apply_update(current: ModelT, updates: Dict[str, Any]) -> ModelT:
    """
    Build a new settings object from ``current`` with ``updates`` applied.

    The original object is never modified. Nested sections are merged one
    level deep, so ``{'risk': {'exit_threshold': 0.8}}`` works on an
    EngineConfig.

    Args:
        current: Valid settings object
        updates: Field overrides

    Returns:
        New validated settings object

    Raises:
        ConfigurationError: If a key is unknown or any value fails validation
    """
    merged = current.dict()

    unknown = set(updates) - set(merged)
    if unknown:
        raise ConfigurationError(f"Unknown {current.__class__.__name__} fields: {sorted(unknown)}")

    for key, value in updates.items():
        if isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value

    try:
        return current.__class__(**merged)
    except ValidationError as e:
        raise ConfigurationError(f"Rejected {current.__class__.__name__} update: {e}") from e


def load_config(config_path: Optional[Path] = None) -> EngineConfig:
    """
    Load configuration from YAML file and environment variables.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        EngineConfig: Loaded configuration
    """
    config = EngineConfig()

    if config_path and config_path.exists():
        config = config.load_from_yaml(config_path)

    config = config.load_from_env()

    return config
