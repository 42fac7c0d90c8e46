"""AWS Signature Version 4 request signing.

A pure function of (method, URL, body, credentials, region, timestamp):
given the same inputs the same headers come out, which is what makes the
signer testable against the published AWS test vectors.
"""

import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional, Union
from urllib.parse import quote, urlsplit

ALGORITHM = "AWS4-HMAC-SHA256"
DEFAULT_SERVICE = "bedrock"

Body = Union[str, bytes, None]


@dataclass(frozen=True)
class AwsCredentials:
    """An AWS access key pair, optionally with a session token."""

    access_key_id: str
    secret_access_key: str
    session_token: Optional[str] = None


@dataclass
class SignedRequest:
    """Headers to send with a signed request."""

    headers: Dict[str, str]
    canonical_request: str
    string_to_sign: str
    signature: str


def format_amz_date(moment: Optional[datetime] = None) -> str:
    """Format a timestamp as ``YYYYMMDDTHHMMSSZ`` in UTC."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y%m%dT%H%M%SZ")


def sha256_hex(data: Body) -> str:
    if data is None:
        data = b""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def hmac_sha256(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def derive_signing_key(
    secret_access_key: str, date: str, region: str, service: str = DEFAULT_SERVICE
) -> bytes:
    """Derive the SigV4 signing key with four chained HMAC-SHA256 steps."""
    k_date = hmac_sha256(("AWS4" + secret_access_key).encode("utf-8"), date)
    k_region = hmac_sha256(k_date, region)
    k_service = hmac_sha256(k_region, service)
    return hmac_sha256(k_service, "aws4_request")


def canonical_uri(path: str) -> str:
    """URI-encode a request path for the canonical request.

    Each segment is encoded once more on top of whatever encoding the
    request URL already carries, as AWS expects for non-S3 services.
    """
    if not path:
        return "/"
    return quote(path, safe="/-_.~")


def sign_request(
    method: str,
    url: str,
    body: Body,
    credentials: AwsCredentials,
    region: str,
    timestamp: Optional[datetime] = None,
    service: str = DEFAULT_SERVICE,
) -> SignedRequest:
    """Sign a request with AWS Signature Version 4.

    The query string is always empty in this gateway's usage. The payload
    hash covers exactly the bytes that will be sent, so callers must send
    ``body`` unchanged.

    Args:
        method: HTTP method, e.g. ``POST``.
        url: Full request URL.
        body: Serialized request body (ignored for GET).
        credentials: The AWS key pair to sign with.
        region: AWS region, e.g. ``us-east-1``.
        timestamp: Signing time; defaults to now.
        service: AWS service name in the credential scope.

    Returns:
        A SignedRequest whose headers include Authorization, X-Amz-Date, Host
        and, for temporary credentials, X-Amz-Security-Token.
    """
    method = method.upper()
    parts = urlsplit(url)
    amz_date = format_amz_date(timestamp)
    date = amz_date[:8]

    headers: Dict[str, str] = {
        "X-Amz-Date": amz_date,
        "Host": parts.netloc,
    }
    if method == "POST":
        headers["Content-Type"] = "application/json"
    if credentials.session_token:
        headers["X-Amz-Security-Token"] = credentials.session_token

    lowered = sorted((key.lower(), value.strip()) for key, value in headers.items())
    canonical_headers = "".join("{}:{}\n".format(key, value) for key, value in lowered)
    signed_headers = ";".join(key for key, _ in lowered)

    payload_hash = sha256_hex("" if method == "GET" else body)

    canonical_request = "\n".join(
        [
            method,
            canonical_uri(parts.path),
            "",
            canonical_headers,
            signed_headers,
            payload_hash,
        ]
    )

    scope = "{}/{}/{}/aws4_request".format(date, region, service)
    string_to_sign = "\n".join(
        [ALGORITHM, amz_date, scope, sha256_hex(canonical_request)]
    )

    signing_key = derive_signing_key(
        credentials.secret_access_key, date, region, service
    )
    signature = hmac.new(
        signing_key, string_to_sign.encode("utf-8"), hashlib.sha256
    ).hexdigest()

    headers["Authorization"] = (
        "{} Credential={}/{}, SignedHeaders={}, Signature={}".format(
            ALGORITHM, credentials.access_key_id, scope, signed_headers, signature
        )
    )

    return SignedRequest(
        headers=headers,
        canonical_request=canonical_request,
        string_to_sign=string_to_sign,
        signature=signature,
    )
