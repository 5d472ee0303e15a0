import json

import pytest

from x402pay.encoding import (
    decode_json_header,
    decode_payment_proof,
    decode_payment_required_header,
    encode_payment_required_header,
    safe_base64_decode,
    safe_base64_encode,
)
from x402pay.errors import DecodeError, ProtocolParseError
from x402pay.types import PaymentRequiredResponse


def test_safe_base64_encode():
    # Test with string input
    assert safe_base64_encode("hello") == "aGVsbG8="

    # Test with bytes input
    assert safe_base64_encode(b"hello") == "aGVsbG8="

    # Test with empty string
    assert safe_base64_encode("") == ""

    # Test with special characters
    assert safe_base64_encode("hello!@#$%^&*()") == "aGVsbG8hQCMkJV4mKigp"


def test_safe_base64_decode():
    assert safe_base64_decode("aGVsbG8=") == "hello"
    assert safe_base64_decode("") == ""
    assert safe_base64_decode("aGVsbG8hQCMkJV4mKigp") == "hello!@#$%^&*()"


class TestDecodeJsonHeader:
    def test_base64_json(self):
        assert decode_json_header(safe_base64_encode('{"a": 1}')) == {"a": 1}

    def test_raw_json_fallback(self):
        assert decode_json_header('{"a": 1}') == {"a": 1}

    def test_garbage_raises(self):
        with pytest.raises(DecodeError):
            decode_json_header("not json at all!")


class TestPaymentRequiredHeader:
    def test_round_trip_preserves_requirements(self, requirement):
        challenge = PaymentRequiredResponse(accepts=[requirement])

        decoded = decode_payment_required_header(encode_payment_required_header(challenge))

        assert decoded == challenge
        assert decoded.accepts[0].max_amount_required == "50000"

    def test_wire_format_uses_camel_case(self, requirement):
        encoded = encode_payment_required_header(PaymentRequiredResponse(accepts=[requirement]))
        data = json.loads(safe_base64_decode(encoded))

        assert data["x402Version"] == 2
        assert data["accepts"][0]["maxAmountRequired"] == "50000"
        assert data["accepts"][0]["payTo"] == requirement.pay_to
        assert data["accepts"][0]["maxTimeoutSeconds"] == 60

    def test_large_amount_survives(self, requirement):
        big = str(2**64 + 1)
        challenge = PaymentRequiredResponse(
            accepts=[requirement.model_copy(update={"max_amount_required": big})]
        )

        decoded = decode_payment_required_header(encode_payment_required_header(challenge))

        assert decoded.accepts[0].amount == 2**64 + 1

    def test_raw_json_header(self, requirement):
        raw = PaymentRequiredResponse(accepts=[requirement]).model_dump_json(by_alias=True)
        assert decode_payment_required_header(raw).accepts[0].pay_to == requirement.pay_to

    def test_malformed_requirement_is_dropped(self):
        raw = json.dumps({"x402Version": 2, "accepts": [{"scheme": "upto"}]})
        assert decode_payment_required_header(raw).accepts == []

    def test_non_integer_amount_dropped_valid_offer_kept(self, requirement):
        data = PaymentRequiredResponse(accepts=[requirement]).model_dump(by_alias=True)
        other_chain = {
            **data["accepts"][0],
            "network": "solana:mainnet",
            "maxAmountRequired": "0.05",
        }
        data["accepts"].insert(0, other_chain)

        decoded = decode_payment_required_header(json.dumps(data))

        assert decoded.accepts == [requirement]

    def test_malformed_envelope_raises(self):
        raw = json.dumps({"x402Version": "two", "accepts": []})
        with pytest.raises(ProtocolParseError):
            decode_payment_required_header(raw)

    def test_non_list_accepts_raises(self):
        with pytest.raises(ProtocolParseError):
            decode_payment_required_header(json.dumps({"accepts": "upto"}))


class TestDecodePaymentProof:
    def test_base64_then_raw(self):
        payload = {"x402Version": 2, "payload": {"signature": "0xabc"}}
        assert decode_payment_proof(safe_base64_encode(json.dumps(payload))) == payload
        assert decode_payment_proof(json.dumps(payload)) == payload

    def test_undecodable_proof(self):
        with pytest.raises(
            DecodeError, match="Payment proof is neither valid base64-encoded JSON nor direct JSON"
        ):
            decode_payment_proof("%%%")

    def test_non_object_proof(self):
        with pytest.raises(DecodeError, match="JSON object"):
            decode_payment_proof("[1, 2]")
