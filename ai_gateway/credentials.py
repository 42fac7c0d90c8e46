"""Decoding of Bedrock API keys into SigV4 credentials or a bearer token.

Callers hand the gateway a single opaque key string. It may be:

* ``accessKeyId:secretAccessKey[:sessionToken]``, signed with SigV4;
* an ``ABSK...`` blob: base64 of ``BedrockAPIKey-<id>:<payload>``;
* a ``BedrockAPIKey-<id>:<payload>`` string.

The payload of the last two is decoded once more; if it yields an access key
pair (JSON or colon-delimited) the request is signed, otherwise the raw key
is sent verbatim as a bearer token. Any other key is treated as a bearer
token.
"""

import base64
import binascii
import json
import re
from dataclasses import dataclass
from typing import Optional

from ai_gateway.errors import CredentialDecodingError, MissingApiKeyError
from ai_gateway.sigv4 import AwsCredentials

ENCODED_KEY_PREFIX = "ABSK"
LABELLED_KEY_PREFIX = "BedrockAPIKey"

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


@dataclass(frozen=True)
class BedrockAuth:
    """Either SigV4 credentials or a bearer token, never both."""

    credentials: Optional[AwsCredentials] = None
    bearer_token: Optional[str] = None

    @property
    def uses_bearer(self) -> bool:
        return self.bearer_token is not None


def _b64decode_text(value: str) -> Optional[str]:
    """Decode standard base64 (padding optional) to UTF-8 text, or None."""
    value = value.strip()
    if not value:
        return None
    padded = value + "=" * (-len(value) % 4)
    try:
        raw = base64.b64decode(padded, validate=True)
        return raw.decode("utf-8")
    except (binascii.Error, ValueError):
        return None


def parse_colon_credentials(value: str) -> Optional[AwsCredentials]:
    """Parse ``accessKeyId:secretAccessKey[:sessionToken]``."""
    parts = [p.strip() for p in value.split(":")]
    if len(parts) not in (2, 3) or not all(parts):
        return None
    return AwsCredentials(
        access_key_id=parts[0],
        secret_access_key=parts[1],
        session_token=parts[2] if len(parts) == 3 else None,
    )


def decode_payload(payload: str) -> Optional[AwsCredentials]:
    """Second-stage decode of a labelled key's payload.

    Returns credentials from a JSON ``{accessKeyId, secretAccessKey}`` object
    or a colon-delimited pair, or None when the payload is opaque.
    """
    decoded = _b64decode_text(payload)
    if decoded is None:
        return None

    try:
        data = json.loads(decoded)
    except ValueError:
        data = None

    if isinstance(data, dict):
        access_key = data.get("accessKeyId")
        secret = data.get("secretAccessKey")
        if access_key and secret:
            return AwsCredentials(
                access_key_id=str(access_key),
                secret_access_key=str(secret),
                session_token=data.get("sessionToken") or None,
            )
        return None

    if ":" in decoded:
        parts = [p.strip() for p in decoded.split(":")]
        if len(parts) == 2 and all(parts):
            return AwsCredentials(access_key_id=parts[0], secret_access_key=parts[1])

    return None


def _split_labelled(value: str) -> Optional[str]:
    """Return the payload of ``label:payload``, or None when malformed."""
    index = value.find(":")
    if index <= 0:
        return None
    payload = value[index + 1 :].strip()
    return payload or None


def resolve_bedrock_auth(raw_key: Optional[str], proxy: bool = False) -> BedrockAuth:
    """Decide how a Bedrock request is authenticated.

    Args:
        raw_key: The key string supplied by the caller.
        proxy: True when the endpoint is a CORS proxy that decodes
            credentials itself; the key is then always sent as a bearer token.

    Returns:
        A BedrockAuth with SigV4 credentials or a bearer token.

    Raises:
        MissingApiKeyError: If no key was supplied.
        CredentialDecodingError: If an ``ABSK`` key cannot be decoded.
    """
    key = (raw_key or "").strip()
    if not key:
        raise MissingApiKeyError(
            "AWS credentials not configured. Provide accessKeyId:secretAccessKey "
            "or a Bedrock API key."
        )

    if proxy:
        return BedrockAuth(bearer_token=key)

    if key.startswith(ENCODED_KEY_PREFIX):
        decoded = _b64decode_text(key[len(ENCODED_KEY_PREFIX):])
        if decoded is None:
            # The prefix itself decodes to three control bytes.
            decoded = _CONTROL_CHARS.sub("", _b64decode_text(key) or "") or None
        if decoded is None:
            raise CredentialDecodingError(
                "Could not decode the Bedrock API key. Check that it was copied "
                "completely."
            )
        payload = _split_labelled(decoded)
        if payload is None:
            raise CredentialDecodingError(
                "Decoded Bedrock API key is not in 'label:payload' form."
            )
        credentials = decode_payload(payload)
        if credentials is not None:
            return BedrockAuth(credentials=credentials)
        return BedrockAuth(bearer_token=key)

    if key.startswith(LABELLED_KEY_PREFIX):
        payload = _split_labelled(key)
        credentials = decode_payload(payload) if payload else None
        if credentials is not None:
            return BedrockAuth(credentials=credentials)
        return BedrockAuth(bearer_token=key)

    credentials = parse_colon_credentials(key)
    if credentials is not None:
        return BedrockAuth(credentials=credentials)

    return BedrockAuth(bearer_token=key)
