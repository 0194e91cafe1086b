"""
Entry point wiring all components.
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys

import httpx

from eigentrader.app import TradingLoop
from eigentrader.config.config import Settings
from eigentrader.core.errors import ConfigurationError
from eigentrader.core.json_utils import dumps
from eigentrader.eigenai.adapter import InferenceAdapter
from eigentrader.eigenai.client import EigenAIClient
from eigentrader.eigenai.grant_authenticator import GrantAuthenticator
from eigentrader.eigenai.reasoning import ReasoningClient
from eigentrader.eigenai.signature_verifier import SignatureVerifier
from eigentrader.infra.logging_cfg import LOGGER_NAME, build_logger, redact_secrets, set_level
from eigentrader.monitoring.metrics import AgentMetrics, start_metrics_server
from eigentrader.orchestrator.deterministic import DeterministicOrchestrator, GuardConfig
from eigentrader.orchestrator.tool_agent import ToolCallingAgent
from eigentrader.recall.client import RegistryClient
from eigentrader.recall.submission_service import SubmissionService
from eigentrader.state.diary import TradingDiary
from eigentrader.state.recorder import InferenceRecorder
from eigentrader.state.verification_tracker import VerificationTracker
from eigentrader.trading.price_oracle import DexScreenerPriceOracle
from eigentrader.trading.tools import load_tools

log = build_logger(LOGGER_NAME, file_path=os.getenv("LOG_FILE", "eigentrader.log") or None)


async def main() -> None:
    try:
        cfg = Settings.load()
    except ConfigurationError as exc:
        log.error(dumps({"event": "config_invalid", "error": str(exc)}))
        sys.exit(1)
    set_level(log, cfg.log_level)
    redact_secrets(log, (cfg.api_key, cfg.private_key, cfg.recall_api_key))
    log.debug(dumps({"event": "settings", **cfg.dump()}))

    metrics = AgentMetrics()
    srv = await start_metrics_server(metrics, cfg.metrics_port) if cfg.metrics_port > 0 else None

    # One HTTP/2 client for the inference provider, one plain client for everything else.
    inference_http = httpx.AsyncClient(http2=True, timeout=cfg.http_timeout)
    http = httpx.AsyncClient(timeout=cfg.http_timeout)

    authenticator = None
    if cfg.auth_mode == "wallet":
        authenticator = GrantAuthenticator(
            cfg.inference_api_url, cfg.private_key, client=http, timeout=cfg.http_timeout, metrics=metrics
        )
    eigen = EigenAIClient(
        cfg.inference_api_url,
        api_key=cfg.api_key,
        authenticator=authenticator,
        client=inference_http,
        metrics=metrics,
    )

    tracker = VerificationTracker(cfg.db_path)
    await tracker.init()
    recorder = InferenceRecorder(tracker, SignatureVerifier(cfg.chain_id, cfg.expected_signer), metrics=metrics)
    diary = TradingDiary(cfg.state_dir)

    try:
        tools = load_tools(cfg.tools_factory, cfg)
    except ConfigurationError as exc:
        log.error(dumps({"event": "tools_unavailable", "error": str(exc)}))
        await _close(srv, inference_http, http)
        sys.exit(1)

    oracle = DexScreenerPriceOracle(cfg.dexscreener_api_url, client=http)
    if cfg.agent_flow == "tool_calling":
        adapter = InferenceAdapter(
            eigen, cfg.model_id, max_tool_results=cfg.max_tool_results, max_tokens=cfg.max_tokens, metrics=metrics
        )
        runner = ToolCallingAgent(
            adapter, tools, diary, recorder=recorder, pairs=cfg.trading_pairs,
            max_steps=cfg.max_agent_steps, metrics=metrics,
        )
    else:
        reasoning = ReasoningClient(
            eigen, cfg.reasoning_model_id,
            max_tokens=cfg.reasoning_max_tokens, temperature=cfg.reasoning_temperature,
        )
        runner = DeterministicOrchestrator(
            tools, reasoning, diary, oracle,
            recorder=recorder,
            pairs=cfg.trading_pairs,
            guard=GuardConfig(cfg.max_price_impact_pct, cfg.slippage_pct, cfg.min_trade_usd),
            metrics=metrics,
        )

    # Missing registry config only disables submission.
    submission = None
    registry = None
    if cfg.registry_configured:
        try:
            registry = RegistryClient(cfg.recall_api_url, cfg.recall_api_key, client=http)
        except ConfigurationError as exc:
            log.warning(dumps({"event": "registry_disabled", "error": str(exc)}))
    if registry is not None:
        submission = SubmissionService(
            registry, tracker, cfg.recall_competition_id,
            interval_sec=cfg.submission_interval_sec, metrics=metrics,
        )

    trading = TradingLoop(runner, diary, cfg.trading_pairs, cfg.iteration_interval_sec, submission=submission)
    log.info(dumps({
        "event": "startup",
        "flow": cfg.agent_flow,
        "auth_mode": cfg.auth_mode,
        "wallet": eigen.wallet_address,
        "pairs": [f"{b}/{t}" for b, t in cfg.trading_pairs],
        "registry": submission is not None,
    }))

    loop = asyncio.get_running_loop()
    run_task = asyncio.create_task(trading.run())

    def stop_all() -> None:
        trading.stop()
        if srv is not None:
            srv.close()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_all)
        except NotImplementedError:
            pass

    try:
        await run_task
    except (asyncio.CancelledError, KeyboardInterrupt):
        log.info("Shutdown signal received, cleaning up...")
        if not run_task.done():
            run_task.cancel()
            try:
                await run_task
            except asyncio.CancelledError:
                pass
    finally:
        log.info("Closing servers and connections...")
        close_tools = getattr(tools, "close", None)
        if close_tools is not None:
            await close_tools()
        await _close(srv, inference_http, http)
        log.info("Shutdown complete")


async def _close(srv, *clients: httpx.AsyncClient) -> None:
    if srv is not None:
        srv.close()
        await srv.wait_closed()
    for client in clients:
        await client.aclose()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nAgent stopped by user")
    sys.exit(0)


if __name__ == "__main__":
    run()
