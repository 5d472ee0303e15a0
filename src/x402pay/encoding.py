import base64
import binascii
import json
import logging
from typing import Any, Union

from pydantic import ValidationError

from x402pay.errors import DecodeError, ProtocolParseError
from x402pay.types import PaymentProof, PaymentRequiredResponse, PaymentRequirement

logger = logging.getLogger(__name__)


def safe_base64_encode(data: Union[str, bytes]) -> str:
    """Safely encode string or bytes to base64 string.

    Args:
        data: String or bytes to encode

    Returns:
        Base64 encoded string
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.b64encode(data).decode("utf-8")


def safe_base64_decode(data: str) -> str:
    """Safely decode base64 string to bytes and then to utf-8 string.

    Args:
        data: Base64 encoded string

    Returns:
        Decoded utf-8 string
    """
    return base64.b64decode(data).decode("utf-8")


def decode_json_header(value: str) -> Any:
    """Decode a header that carries JSON, base64 encoded or not.

    Base64 is tried first; servers that skip the encoding send the JSON as is.

    Args:
        value: Raw header value

    Returns:
        The parsed JSON value

    Raises:
        DecodeError: If the value is neither base64 JSON nor raw JSON
    """
    try:
        return json.loads(safe_base64_decode(value))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        pass

    try:
        return json.loads(value)
    except ValueError:
        raise DecodeError("Value is neither valid base64-encoded JSON nor direct JSON")


def encode_payment_required_header(payment_required: PaymentRequiredResponse) -> str:
    """Encode a challenge as the base64 value of the ``Payment-Required`` header."""
    return safe_base64_encode(payment_required.model_dump_json(by_alias=True))


def decode_payment_required_header(value: str) -> PaymentRequiredResponse:
    """Decode a challenge header.

    Offers are validated one at a time; a malformed offer (for example one
    for a chain with decimal amounts) is dropped and the rest are kept.

    Raises:
        ProtocolParseError: If the header is undecodable or the envelope is
            malformed
    """
    data = decode_json_header(value)
    if isinstance(data, dict) and isinstance(data.get("accepts"), list):
        accepts = []
        for offer in data["accepts"]:
            try:
                accepts.append(PaymentRequirement.model_validate(offer))
            except ValidationError as e:
                logger.debug("[x402] Skipping malformed payment requirement: %s", e)
        data = {**data, "accepts": accepts}

    try:
        return PaymentRequiredResponse.model_validate(data)
    except ValidationError as e:
        raise ProtocolParseError(f"Malformed payment requirement: {e}") from e


def encode_payment_proof(proof: PaymentProof) -> str:
    """Encode a proof as the base64 value of the ``X-PAYMENT`` header."""
    return safe_base64_encode(proof.model_dump_json(by_alias=True))


def decode_payment_proof(value: str) -> dict[str, Any]:
    """Decode an ``X-PAYMENT`` header into its JSON object.

    The facilitator is the authority on proof validity, so the object is
    returned as is rather than validated against ``PaymentProof``.

    Raises:
        DecodeError: If the header is neither base64 JSON nor raw JSON, or
            does not hold a JSON object
    """
    try:
        data = decode_json_header(value)
    except DecodeError:
        raise DecodeError("Payment proof is neither valid base64-encoded JSON nor direct JSON")
    if not isinstance(data, dict):
        raise DecodeError("Payment proof must be a JSON object")
    return data
