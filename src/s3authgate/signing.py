"""AWS Signature Version 4 canonicalization and signing for s3authgate.

Rebuilds the canonical request from an already-resolved ``SignableRequest`` and
runs the HMAC-SHA256 key derivation chain to produce the ``Authorization`` the
client should have sent.

References:
    - https://docs.aws.amazon.com/IAM/latest/UserGuide/create-signed-request.html
"""

from __future__ import annotations

import hashlib
import hmac
import urllib.parse
from dataclasses import dataclass, field

from s3authgate.models import Authorization, Credential

# Constants
ALGORITHM = "AWS4-HMAC-SHA256"
ALGORITHM_NAME = "SHA256"
KEY_PREFIX = "AWS4"
SCOPE_TERMINATOR = "aws4_request"
AMZ_DATE_HEADER = "x-amz-date"
CONTENT_SHA256_HEADER = "x-amz-content-sha256"


@dataclass(frozen=True)
class SignableRequest:
    """Everything the signer needs, resolved from one incoming request.

    Attributes:
        credential: The matched credential.
        method: HTTP method.
        uri: Decoded request path, used verbatim.
        date: Date declared in the credential scope (YYYYMMDD); used when
            ``x-amz-date`` is not signed.
        query_params: Query parameters, one merged value per name. Bytes that
            are not valid UTF-8 are carried as surrogate escapes.
        signed_headers: Lowercased signed header name -> resolved value.
    """

    credential: Credential
    method: str
    uri: str
    date: str
    query_params: dict[str, str] = field(default_factory=dict)
    signed_headers: dict[str, str] = field(default_factory=dict)

    @property
    def request_datetime(self) -> str:
        """The timestamp that goes into the string to sign."""
        return self.signed_headers.get(AMZ_DATE_HEADER, self.date)


# -- Canonical request construction --------------------------------------------


def _form_encode(s: str) -> str:
    """Form-value encoding for query keys and values.

    Characters A-Z, a-z, 0-9, '-', '_', '.', '~' are not encoded, a space
    becomes '+', everything else is percent-encoded with uppercase hex.
    Surrogate escapes are written back as the bytes they stand for.
    """
    return urllib.parse.quote_plus(s, safe="", errors="surrogateescape")


def build_canonical_query_string(params: dict[str, str]) -> str:
    """Build the canonical query string from merged query parameters.

    Args:
        params: Parameter name -> value (duplicates already merged).

    Returns:
        ``key=value`` pairs sorted by key and joined with ``&``.
    """
    return "&".join(
        f"{_form_encode(name)}={_form_encode(params[name])}" for name in sorted(params)
    )


def build_canonical_headers(signed_headers: dict[str, str]) -> str:
    """Render signed headers as sorted ``name:value`` lines (no trailing newline)."""
    lower = {name.lower(): value for name, value in signed_headers.items()}
    return "\n".join(f"{name}:{lower[name]}" for name in sorted(lower))


def signed_header_names(signed_headers: dict[str, str]) -> list[str]:
    """Return the signed header names, lowercased and sorted."""
    return sorted({name.lower() for name in signed_headers})


def build_canonical_request(req: SignableRequest) -> str:
    """Build the canonical request string.

    The payload hash is the signed ``x-amz-content-sha256`` value as sent by
    the client; the body itself is never read.

    Args:
        req: The resolved signing context.

    Returns:
        The canonical request string.
    """
    canonical_query = build_canonical_query_string(req.query_params)
    canonical_headers = build_canonical_headers(req.signed_headers)
    signed_headers_str = ";".join(signed_header_names(req.signed_headers))
    payload_hash = req.signed_headers.get(CONTENT_SHA256_HEADER, "")

    return (
        f"{req.method}\n{req.uri}\n{canonical_query}\n"
        f"{canonical_headers}\n\n{signed_headers_str}\n{payload_hash}"
    )


# -- String to sign ------------------------------------------------------------


def credential_scope(timestamp: str, region: str, service: str) -> str:
    """Return ``YYYYMMDD/region/service/aws4_request``."""
    return f"{timestamp[:8]}/{region}/{service}/{SCOPE_TERMINATOR}"


def build_string_to_sign(req: SignableRequest) -> str:
    """Build the string to sign.

    Args:
        req: The resolved signing context.

    Returns:
        The string to sign.
    """
    timestamp = req.request_datetime
    scope = credential_scope(timestamp, req.credential.region, req.credential.service)
    canonical = build_canonical_request(req).encode("utf-8", "surrogateescape")
    canonical_hash = hashlib.sha256(canonical).hexdigest()
    return f"{ALGORITHM}\n{timestamp}\n{scope}\n{canonical_hash}"


# -- Signing key derivation ----------------------------------------------------


def derive_signing_key(secret_key: str, date: str, region: str, service: str) -> bytes:
    """Derive the SigV4 signing key via the HMAC-SHA256 chain.

    Args:
        secret_key: The secret access key.
        date: Date string (YYYYMMDD).
        region: AWS region.
        service: AWS service name.

    Returns:
        The 32-byte signing key.
    """
    k_date = hmac.new(
        (KEY_PREFIX + secret_key).encode("utf-8"),
        date.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    k_region = hmac.new(k_date, region.encode("utf-8"), hashlib.sha256).digest()
    k_service = hmac.new(k_region, service.encode("utf-8"), hashlib.sha256).digest()
    k_signing = hmac.new(k_service, SCOPE_TERMINATOR.encode("utf-8"), hashlib.sha256).digest()
    return k_signing


# -- Signature computation -----------------------------------------------------


def compute_signature(signing_key: bytes, string_to_sign: str) -> str:
    """Compute the final HMAC-SHA256 signature as 64 lowercase hex characters."""
    return hmac.new(signing_key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()


def sign(req: SignableRequest) -> Authorization:
    """Compute the Authorization the client should have sent for ``req``.

    Args:
        req: The resolved signing context.

    Returns:
        The expected Authorization, with signed headers sorted and lowercased.
    """
    date = req.request_datetime[:8]
    cred = req.credential
    signing_key = derive_signing_key(cred.secret_key, date, cred.region, cred.service)
    signature = compute_signature(signing_key, build_string_to_sign(req))

    return Authorization(
        algorithm=ALGORITHM_NAME,
        access_key_id=cred.access_key_id,
        date=date,
        region=cred.region,
        service=cred.service,
        signed_headers=tuple(signed_header_names(req.signed_headers)),
        signature=signature,
    )
