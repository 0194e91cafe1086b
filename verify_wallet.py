"""One-time wallet ownership verification with the Recall registry."""
import asyncio
import sys

from eigentrader.config.config import Settings
from eigentrader.core.errors import ConfigurationError
from eigentrader.recall.client import RegistryClient


async def main() -> int:
    try:
        cfg = Settings.load()
        account = cfg.resolve_signer()
        registry = RegistryClient(cfg.recall_api_url, cfg.recall_api_key, timeout=cfg.http_timeout)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}")
        return 1

    try:
        print(f"Verifying wallet {account.address} with {registry.api_url} ...")
        result = await registry.verify_wallet_ownership(account)
    finally:
        await registry.close()

    if not result.success:
        print(f"Verification failed ({result.status}): {result.error}")
        return 1
    print(f"Wallet verified: {result.data.get('walletAddress')}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
