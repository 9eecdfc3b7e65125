"""AWS Signature Version 4 request verification for s3authgate.

Parses the Authorization header, matches it against the configured
credentials, resolves the signed header values from the live request and
recomputes the header the client should have sent. The request is accepted
only if the recomputed header equals the received one byte-for-byte.

References:
    - https://docs.aws.amazon.com/IAM/latest/UserGuide/create-signed-request.html
    - https://docs.aws.amazon.com/AmazonS3/latest/API/sig-v4-header-based-auth.html
"""

import hmac
import logging
import re
import urllib.parse
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone

from fastapi import Request

from s3authgate.errors import (
    ClockSkewError,
    HeaderParseError,
    InvalidTimestampError,
    MalformedQueryError,
    MissingSignedHeaderError,
    SignatureMismatchError,
    UnknownCredentialError,
)
from s3authgate.models import Authorization, Credential
from s3authgate.signing import ALGORITHM_NAME, AMZ_DATE_HEADER, SignableRequest, sign

logger = logging.getLogger(__name__)

DEFAULT_HEADER_NAME = "Authorization"
DEFAULT_MAX_SKEW = timedelta(minutes=15)
AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"

# Regex for the Authorization header
# Example: AWS4-HMAC-SHA256 Credential=AKID/20130524/us-east-1/s3/aws4_request,
#          SignedHeaders=host;x-amz-date, Signature=abcdef...
AUTH_HEADER_RE = re.compile(
    r"AWS4-HMAC-(?P<algorithm>[A-Za-z0-9]+)\s*"
    r"Credential=(?P<access_key_id>.*)/(?P<date>[0-9]{8})/(?P<region>.*)/(?P<service>.*)"
    r"/aws4_request,\s*"
    r"SignedHeaders=(?P<signed_headers>.*),\s*"
    r"Signature=(?P<signature>.*)"
)

_REQUIRED_FIELDS = (
    "access_key_id",
    "date",
    "region",
    "service",
    "signed_headers",
    "signature",
)

# A '%' that is not followed by two hex digits
_BAD_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")


# -- Parsing -------------------------------------------------------------------


def parse_authorization_header(header: str | None) -> Authorization:
    """Parse an Authorization header value into its SigV4 components.

    Args:
        header: The raw header value.

    Returns:
        The parsed Authorization, signed headers in the order given.

    Raises:
        HeaderParseError: If the header is empty, malformed, uses an algorithm
            other than SHA256, or has an empty field.
    """
    if not header:
        raise HeaderParseError("empty header")

    match = AUTH_HEADER_RE.fullmatch(header)
    if not match:
        raise HeaderParseError("invalid header format")

    fields = match.groupdict()
    if fields["algorithm"] != ALGORITHM_NAME:
        raise HeaderParseError(f"unsupported algorithm: {fields['algorithm']!r}")
    for name in _REQUIRED_FIELDS:
        if not fields[name]:
            raise HeaderParseError(f"missing field: {name}")

    return Authorization(
        algorithm=fields["algorithm"],
        access_key_id=fields["access_key_id"],
        date=fields["date"],
        region=fields["region"],
        service=fields["service"],
        signed_headers=tuple(fields["signed_headers"].split(";")),
        signature=fields["signature"],
    )


def parse_query_params(query_string: str) -> dict[str, str]:
    """Parse a raw query string, merging repeated names into one value.

    Values of a repeated name are sorted and joined with ','. Names without
    '=' get an empty value. Escapes that are not valid UTF-8 decode to
    surrogate escapes, so every distinct byte sequence keeps a distinct value.

    Args:
        query_string: The raw query string (without leading '?').

    Returns:
        Decoded parameter name -> merged value.

    Raises:
        MalformedQueryError: On a ';' separator or a malformed '%' escape.
    """
    grouped: dict[str, list[str]] = {}
    for pair in query_string.split("&"):
        if ";" in pair:
            raise MalformedQueryError("invalid semicolon separator in query")
        if not pair:
            continue
        name, _, value = pair.partition("=")
        if _BAD_ESCAPE_RE.search(name) or _BAD_ESCAPE_RE.search(value):
            raise MalformedQueryError(f"invalid URL escape in {pair!r}")
        decoded = urllib.parse.unquote_plus(name, errors="surrogateescape")
        grouped.setdefault(decoded, []).append(
            urllib.parse.unquote_plus(value, errors="surrogateescape")
        )

    return {name: ",".join(sorted(values)) for name, values in grouped.items()}


# -- Request target ------------------------------------------------------------


def request_path(request: Request) -> str:
    """Return the decoded path of the request target.

    ``request.url`` is rebuilt from the decoded path and re-split, so an
    encoded '?' or '#' would truncate it. The path is taken from the ASGI
    ``raw_path`` instead, falling back to ``path`` when the server omits it.
    Bytes that are not valid UTF-8 become surrogate escapes.
    """
    raw_path = request.scope.get("raw_path")
    if raw_path is None:
        return request.scope["path"]
    raw_path = raw_path.split(b"?", 1)[0]
    return urllib.parse.unquote_to_bytes(raw_path).decode("utf-8", "surrogateescape")


def request_query_string(request: Request) -> str:
    """Return the raw query string exactly as received (without '?')."""
    return request.scope.get("query_string", b"").decode("utf-8", "surrogateescape")


# -- Credential lookup ---------------------------------------------------------


def match_credential(
    access_key_id: str,
    region: str,
    service: str,
    credentials: Iterable[Credential],
) -> Credential:
    """Return the first credential matching all three fields exactly.

    Raises:
        UnknownCredentialError: If no credential matches.
    """
    for cred in credentials:
        if (
            cred.access_key_id == access_key_id
            and cred.region == region
            and cred.service == service
        ):
            return cred
    raise UnknownCredentialError(access_key_id, region, service)


# -- Signed header resolution --------------------------------------------------


def declared_content_length(request: Request) -> str:
    """Return the request's declared content length as a decimal string.

    '-1' means the length is unknown (chunked transfer encoding).
    """
    value = request.headers.get("content-length")
    if value is not None:
        return value
    if "chunked" in request.headers.get("transfer-encoding", "").lower():
        return "-1"
    return "0"


def resolve_signed_header(name: str, request: Request) -> str | None:
    """Resolve the value a signed header had on the live request.

    ``host``, ``method`` and ``content-length`` come from request metadata;
    anything else from the header collection, with repeated headers joined
    by ', '.

    Args:
        name: Signed header name (any casing).
        request: The incoming request.

    Returns:
        The value, or None if the header is not present.
    """
    lower = name.lower()
    if lower == "host":
        return request.headers.get("host") or request.url.netloc
    if lower == "method":
        return request.method
    if lower == "content-length":
        return declared_content_length(request)

    values = request.headers.getlist(name) or request.headers.getlist(lower)
    if not values:
        return None
    return ", ".join(values)


# -- Clock skew check ----------------------------------------------------------


def check_clock_skew(amz_date: str, now: datetime, max_skew: timedelta = DEFAULT_MAX_SKEW) -> None:
    """Check that the request timestamp is no older than ``max_skew``.

    Only the past is bounded: a timestamp ahead of ``now`` passes.

    Args:
        amz_date: The x-amz-date timestamp (YYYYMMDDTHHMMSSZ format).
        now: The current time. A naive value is taken as UTC.
        max_skew: The largest accepted age, inclusive.

    Raises:
        InvalidTimestampError: If the timestamp is malformed.
        ClockSkewError: If the timestamp is older than ``max_skew``.
    """
    try:
        request_time = datetime.strptime(amz_date, AMZ_DATE_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        raise InvalidTimestampError(amz_date)

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    age = now - request_time
    if age > max_skew:
        raise ClockSkewError(f"request timestamp is too old: {age}")


# -- Verification --------------------------------------------------------------


def _headers_equal(expected: str, received: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


def verify_request(
    request: Request,
    credentials: Iterable[Credential],
    now: datetime | None = None,
    max_skew: timedelta = DEFAULT_MAX_SKEW,
    header_name: str = DEFAULT_HEADER_NAME,
) -> Credential:
    """Verify that the incoming request carries a valid SigV4 Authorization header.

    The skew check runs only when ``x-amz-date`` is one of the signed headers;
    requests that sign over another date source are not skew-checked.

    Args:
        request: The incoming request.
        credentials: The configured credentials.
        now: The current time, naive values taken as UTC. Defaults to
            ``datetime.now(timezone.utc)``.
        max_skew: Maximum accepted age of the x-amz-date timestamp.
        header_name: Header carrying the signature.

    Returns:
        The matched credential.

    Raises:
        HeaderParseError: On an absent or malformed header.
        UnknownCredentialError: If no credential matches.
        MalformedQueryError: If the query string cannot be parsed.
        MissingSignedHeaderError: If a signed header is absent.
        InvalidTimestampError: If x-amz-date is malformed.
        ClockSkewError: If x-amz-date is too old.
        SignatureMismatchError: If the recomputed header differs.
    """
    header = request.headers.get(header_name, "")
    parsed = parse_authorization_header(header)

    cred = match_credential(parsed.access_key_id, parsed.region, parsed.service, credentials)

    query_params = parse_query_params(request_query_string(request))

    signed_headers: dict[str, str] = {}
    for name in parsed.signed_headers:
        value = resolve_signed_header(name, request)
        if value is None:
            raise MissingSignedHeaderError(name)
        signed_headers[name.lower()] = value

    amz_date = signed_headers.get(AMZ_DATE_HEADER)
    if amz_date:
        check_clock_skew(amz_date, now or datetime.now(timezone.utc), max_skew)

    signable = SignableRequest(
        credential=cred,
        method=request.method,
        uri=request_path(request),
        date=parsed.date,
        query_params=query_params,
        signed_headers=signed_headers,
    )

    expected = sign(signable)
    candidates = (expected.render(""), expected.render(" "))
    matches = [_headers_equal(candidate, header) for candidate in candidates]
    if not any(matches):
        for name, value in signed_headers.items():
            logger.debug("- signed header %s: %s", name, value)
        raise SignatureMismatchError(expected=candidates, received=header)

    return cred


class SigV4Verifier:
    """Verifies requests against a fixed set of credentials.

    Holds only read-only configuration, so one instance can serve any number
    of concurrent requests.

    Attributes:
        credentials: The configured credentials.
        max_skew: Maximum accepted age of the x-amz-date timestamp.
        header_name: Header carrying the signature.
    """

    def __init__(
        self,
        credentials: Iterable[Credential],
        max_skew: timedelta = DEFAULT_MAX_SKEW,
        header_name: str = DEFAULT_HEADER_NAME,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the verifier.

        Args:
            credentials: The configured credentials.
            max_skew: Maximum accepted age of the x-amz-date timestamp.
            header_name: Header carrying the signature.
            clock: Returns the current time; defaults to UTC wall clock.
        """
        self.credentials = tuple(credentials)
        self.max_skew = max_skew
        self.header_name = header_name
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def verify(self, request: Request) -> Credential:
        """Verify ``request``; see :func:`verify_request`."""
        return verify_request(
            request,
            self.credentials,
            now=self._clock(),
            max_skew=self.max_skew,
            header_name=self.header_name,
        )
