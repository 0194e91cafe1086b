"""
Tests for local EigenAI signature verification.
"""
from conftest import PROVIDER_KEY, WALLET_KEY, provider_signature, sign_text
from eth_account import Account

from eigentrader.core.json_utils import dumps
from eigentrader.eigenai.signature_verifier import (
    SignatureVerifier,
    build_signed_message,
    create_audit_hashes,
)
from eigentrader.eigenai.types import ChatMessage, ChatRequest, ChatResponse, Usage, VerificationData

MODEL = "qwen3-32b-128k-bf16"


def verifier():
    return SignatureVerifier("1", Account.from_key(PROVIDER_KEY).address)


class TestSignedMessage:
    def test_concatenation_order(self):
        msgs = [ChatMessage("system", "S"), ChatMessage("user", "U"), ChatMessage("assistant", None)]
        assert build_signed_message("1", "m", msgs, "OUT") == "1mSUOUT"

    def test_string_prompt(self):
        assert build_signed_message("8453", "m", "abc", "x") == "8453mabcx"


class TestVerify:
    """Round trip, tampering and malformed input."""

    def test_valid_signature_round_trip(self):
        prompt, output = "system text" + "user text", '{"reasoning": "ok"}'
        data = VerificationData(prompt, MODEL, output, provider_signature(prompt, output, MODEL))
        result = verifier().verify_data(data)
        assert result.is_valid
        assert result.recovered_address.lower() == Account.from_key(PROVIDER_KEY).address.lower()
        assert result.error is None

    def test_signature_without_0x_prefix(self):
        sig = provider_signature("p", "o", MODEL)[2:]
        assert verifier().verify_data(VerificationData("p", MODEL, "o", sig)).is_valid

    def test_expected_signer_case_insensitive(self):
        v = SignatureVerifier("1", Account.from_key(PROVIDER_KEY).address.lower())
        assert v.verify_data(VerificationData("p", MODEL, "o", provider_signature("p", "o", MODEL))).is_valid

    def test_tampered_output_is_mismatch(self):
        sig = provider_signature("p", "BUY", MODEL)
        result = verifier().verify_data(VerificationData("p", MODEL, "SELL", sig))
        assert not result.is_valid
        assert result.recovered_address is not None
        assert "mismatch" in result.error.lower()

    def test_wrong_signer_is_mismatch(self):
        message = build_signed_message("1", MODEL, "p", "o")
        result = verifier().verify_data(VerificationData("p", MODEL, "o", sign_text(WALLET_KEY, message)))
        assert not result.is_valid
        assert result.recovered_address == Account.from_key(WALLET_KEY).address

    def test_wrong_chain_id_is_mismatch(self):
        sig = provider_signature("p", "o", MODEL, chain_id="8453")
        assert not verifier().verify_data(VerificationData("p", MODEL, "o", sig)).is_valid

    def test_malformed_signature_never_raises(self):
        for bad in ("", "0x1234", "zz" * 65, "0x" + "00" * 64):
            result = verifier().verify_message("hello", bad)
            assert not result.is_valid
            assert result.recovered_address is None
            assert result.error

    def test_non_string_signature_never_raises(self):
        for bad in (123, b"\x01" * 65, ["0xab"]):
            result = verifier().verify_message("hello", bad)
            assert not result.is_valid
            assert result.error

    def test_numeric_signature_from_provider_json(self):
        request = ChatRequest([ChatMessage("user", "U")], model=MODEL)
        response = ChatResponse.from_dict({"model": MODEL, "choices": [{"message": {"content": "hi"}}], "signature": 7})
        assert response.signature == "7"
        assert not verifier().verify(request, response).is_valid


class TestVerifyResponse:
    def test_tool_call_output_is_serialized_calls(self):
        """A tool-call-only answer is signed over the JSON of its tool calls."""
        tool_calls = [{"id": "c1", "type": "function", "function": {"name": "getWalletBalance", "arguments": "{}"}}]
        request = ChatRequest([ChatMessage("system", "S"), ChatMessage("user", "U")], model=MODEL)
        signature = provider_signature("SU", dumps(tool_calls), MODEL)
        response = ChatResponse("r1", MODEL, "", tool_calls, "tool-calls", Usage(), signature)
        assert verifier().verify(request, response).is_valid

    def test_audit_hashes_are_stable(self):
        request = ChatRequest([ChatMessage("user", "U")], model=MODEL)
        response = ChatResponse("r1", MODEL, "hi", [], "stop", Usage(), None, raw={"id": "r1"})
        a = create_audit_hashes(request, response)
        b = create_audit_hashes(request, response)
        assert a == b
        assert a["request_hash"].startswith("0x") and len(a["request_hash"]) == 66
