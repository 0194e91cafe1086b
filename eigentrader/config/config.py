"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from dotenv import load_dotenv

from eigentrader.config.tokens import parse_trading_pairs
from eigentrader.core.errors import ConfigurationError
from eigentrader.core.json_utils import dumps

load_dotenv()

log = logging.getLogger("eigentrader")

WALLET_MODE_API_URL = "https://determinal-api.eigenarcade.com"
API_KEY_MODE_API_URL = "https://eigenai.eigencloud.xyz"
DEFAULT_MODEL_ID = "gpt-oss-120b-f16"
DEFAULT_REASONING_MODEL_ID = "qwen3-32b-128k-bf16"
DEFAULT_CHAIN_ID = "1"
DEFAULT_EXPECTED_SIGNER = "0x7053bfb0433a16a2405de785d547b1b32cee0cf3"
DEFAULT_TRADING_PAIRS = "USDC/WETH,USDC/AERO,USDC/cbETH,USDC/cbBTC"

AGENT_FLOWS = ("deterministic", "tool_calling")

_PRIVATE_KEY_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from exc


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from exc


def _str_env(key: str) -> Optional[str]:
    raw = os.getenv(key)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def is_valid_private_key(key: Optional[str]) -> bool:
    return bool(key and _PRIVATE_KEY_RE.match(key))


@dataclass(frozen=True)
class Settings:
    llm_provider: str
    agent_flow: str
    # EigenAI
    eigenai_api_url: str | None
    model_id: str
    reasoning_model_id: str
    api_key: str | None
    private_key: str | None
    chain_id: str
    expected_signer: str
    max_tool_results: int
    max_tokens: int
    reasoning_max_tokens: int
    reasoning_temperature: float
    max_agent_steps: int
    # Verification registry (Recall)
    recall_api_url: str | None
    recall_api_key: str | None
    recall_competition_id: str | None
    submission_interval_sec: float
    # Execution guards
    max_price_impact_pct: float
    slippage_pct: float
    min_trade_usd: float
    # Trading loop
    trading_pairs: List[Tuple[str, str]]
    iteration_interval_sec: float
    dry_run: bool
    # Runtime
    state_dir: str
    db_path: str
    http_timeout: float
    metrics_port: int
    log_file: str | None
    log_level: str
    tools_factory: str | None
    dexscreener_api_url: str

    def dump(self) -> dict:
        """Settings as a dict with secrets masked."""
        data = self.__dict__.copy()
        for secret in ("api_key", "private_key", "recall_api_key"):
            if data.get(secret):
                data[secret] = "***"
        return data

    @property
    def auth_mode(self) -> str:
        """API key wins when both credentials are present."""
        return "api_key" if self.api_key else "wallet"

    @property
    def inference_api_url(self) -> str:
        if self.eigenai_api_url:
            return self.eigenai_api_url.rstrip("/")
        return API_KEY_MODE_API_URL if self.auth_mode == "api_key" else WALLET_MODE_API_URL

    @property
    def registry_configured(self) -> bool:
        return bool(self.recall_api_url and self.recall_api_key and self.recall_competition_id)

    @classmethod
    def load(cls) -> "Settings":
        state_dir = os.getenv("STATE_DIR", "state")
        try:
            pairs = parse_trading_pairs(os.getenv("TRADING_PAIRS", DEFAULT_TRADING_PAIRS))
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

        cfg = cls(
            llm_provider=os.getenv("LLM_PROVIDER", "eigenai").strip().lower(),
            agent_flow=os.getenv("EIGEN_AGENT_FLOW", "deterministic").strip().lower(),
            eigenai_api_url=_str_env("EIGENAI_API_URL"),
            model_id=os.getenv("EIGENAI_MODEL_ID", DEFAULT_MODEL_ID),
            reasoning_model_id=os.getenv("EIGENAI_REASONING_MODEL_ID", DEFAULT_REASONING_MODEL_ID),
            api_key=_str_env("EIGENAI_API_KEY"),
            private_key=_str_env("EIGENAI_PRIVATE_KEY"),
            chain_id=os.getenv("EIGENAI_CHAIN_ID", DEFAULT_CHAIN_ID),
            expected_signer=os.getenv("EIGENAI_EXPECTED_SIGNER", DEFAULT_EXPECTED_SIGNER),
            max_tool_results=_int_env("EIGENAI_MAX_TOOL_RESULTS", 8),
            max_tokens=_int_env("EIGENAI_MAX_TOKENS", 4096),
            reasoning_max_tokens=_int_env("EIGENAI_REASONING_MAX_TOKENS", 8192),
            reasoning_temperature=_float_env("EIGENAI_REASONING_TEMPERATURE", 0.3),
            max_agent_steps=_int_env("EIGEN_MAX_AGENT_STEPS", 20),
            recall_api_url=_str_env("RECALL_API_URL"),
            recall_api_key=_str_env("RECALL_API_KEY"),
            recall_competition_id=_str_env("RECALL_COMPETITION_ID"),
            submission_interval_sec=_float_env("RECALL_SUBMISSION_INTERVAL_SEC", 15 * 60),
            max_price_impact_pct=_float_env("MAX_PRICE_IMPACT_PCT", 5.0),
            slippage_pct=_float_env("SLIPPAGE_PCT", 1.0),
            min_trade_usd=_float_env("MIN_TRADE_USD", 1.0),
            trading_pairs=pairs,
            iteration_interval_sec=_float_env("ITERATION_INTERVAL_SEC", 5 * 60),
            dry_run=env_bool("DRY_RUN", False) or env_bool("TEST_MODE", False),
            state_dir=state_dir,
            db_path=os.getenv("EIGEN_DB_PATH", os.path.join(state_dir, "inferences.db")),
            http_timeout=_float_env("HTTP_TIMEOUT", 60.0),
            metrics_port=_int_env("METRICS_PORT", 9095),
            log_file=os.getenv("LOG_FILE", "eigentrader.log") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            tools_factory=_str_env("TOOLS_FACTORY"),
            dexscreener_api_url=os.getenv("DEXSCREENER_API_URL", "https://api.dexscreener.com/latest"),
        )
        cfg._validate()
        _sanity_check(cfg)
        return cfg

    def resolve_signer(self):
        from eth_account import Account

        if not self.private_key:
            raise ConfigurationError("EIGENAI_PRIVATE_KEY is required for wallet signing")
        if not is_valid_private_key(self.private_key):
            raise ConfigurationError("EIGENAI_PRIVATE_KEY must be 0x followed by 64 hex characters")
        return Account.from_key(self.private_key)

    def _validate(self) -> None:
        if self.llm_provider != "eigenai":
            raise ConfigurationError(f"LLM_PROVIDER={self.llm_provider!r} is not supported; use 'eigenai'")
        if self.agent_flow not in AGENT_FLOWS:
            raise ConfigurationError(f"EIGEN_AGENT_FLOW must be one of {AGENT_FLOWS}")
        if not self.api_key and not self.private_key:
            raise ConfigurationError("Set EIGENAI_API_KEY or EIGENAI_PRIVATE_KEY")
        if not self.api_key and not is_valid_private_key(self.private_key):
            raise ConfigurationError("EIGENAI_PRIVATE_KEY must be 0x followed by 64 hex characters")
        if self.max_tool_results <= 0:
            raise ConfigurationError("EIGENAI_MAX_TOOL_RESULTS must be > 0")
        if self.max_tokens <= 0 or self.reasoning_max_tokens <= 0:
            raise ConfigurationError("max token limits must be > 0")
        if self.max_agent_steps <= 0:
            raise ConfigurationError("EIGEN_MAX_AGENT_STEPS must be > 0")
        if self.submission_interval_sec <= 0:
            raise ConfigurationError("RECALL_SUBMISSION_INTERVAL_SEC must be > 0")
        if self.max_price_impact_pct < 0:
            raise ConfigurationError("MAX_PRICE_IMPACT_PCT must be >= 0")
        if not 0 <= self.slippage_pct < 100:
            raise ConfigurationError("SLIPPAGE_PCT must be in [0, 100)")
        if self.min_trade_usd < 0:
            raise ConfigurationError("MIN_TRADE_USD must be >= 0")
        if self.iteration_interval_sec <= 0:
            raise ConfigurationError("ITERATION_INTERVAL_SEC must be > 0")
        if not self.trading_pairs:
            raise ConfigurationError("TRADING_PAIRS must name at least one pair")
        if self.tools_factory and ":" not in self.tools_factory:
            raise ConfigurationError("TOOLS_FACTORY must look like 'package.module:callable'")

        if self.api_key and self.private_key:
            log.warning("Both EIGENAI_API_KEY and EIGENAI_PRIVATE_KEY set; using API key mode")
        if self.max_price_impact_pct > 10:
            log.warning(
                f"MAX_PRICE_IMPACT_PCT is {self.max_price_impact_pct}%. "
                "Consider a tighter ceiling for thin pools."
            )
        if self.slippage_pct > 3:
            log.warning(f"SLIPPAGE_PCT is {self.slippage_pct}%, trades may fill far from quote")
        if any(v is not None for v in (self.recall_api_url, self.recall_api_key, self.recall_competition_id)) and (
            not self.registry_configured
        ):
            log.warning("Recall registry partially configured; signature submission disabled")


def _sanity_check(cfg: Settings) -> None:
    """Log the critical settings once at startup so overrides are obvious."""
    payload = {
        "event": "config_loaded",
        "agent_flow": cfg.agent_flow,
        "auth_mode": cfg.auth_mode,
        "inference_api_url": cfg.inference_api_url,
        "model_id": cfg.model_id,
        "reasoning_model_id": cfg.reasoning_model_id,
        "pairs": [f"{b}/{t}" for b, t in cfg.trading_pairs],
        "dry_run": cfg.dry_run,
        "registry": cfg.registry_configured,
    }
    log.info(dumps(payload))
