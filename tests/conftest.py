"""
Pytest configuration and fixtures.
Adds the repo root to the Python path so tests can import eigentrader.
"""

import sys
from pathlib import Path

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from eth_account import Account  # noqa: E402
from eth_account.messages import encode_defunct  # noqa: E402

from eigentrader.eigenai.signature_verifier import build_signed_message  # noqa: E402

WALLET_KEY = "0x" + "11" * 32
PROVIDER_KEY = "0x" + "22" * 32


def sign_text(key: str, text: str) -> str:
    signed = Account.from_key(key).sign_message(encode_defunct(text=text))
    return "0x" + bytes(signed.signature).hex()


def provider_signature(prompt: str, output: str, model: str = "qwen3-32b-128k-bf16", chain_id: str = "1") -> str:
    """Signature the provider would attach to a response."""
    return sign_text(PROVIDER_KEY, build_signed_message(chain_id, model, prompt, output))


@pytest.fixture
def wallet_account():
    return Account.from_key(WALLET_KEY)


@pytest.fixture
def provider_account():
    return Account.from_key(PROVIDER_KEY)
