"""SigV4 verification error definitions for s3authgate."""


class SigV4Error(Exception):
    """A verification failure with an S3-compatible code, message, and HTTP status.

    Attributes:
        code: The S3 error code string (e.g. "SignatureDoesNotMatch").
        message: Human-readable error description, safe to return to the client.
        detail: Diagnostic description for logs (defaults to ``message``).
        http_status: The HTTP status code to return.
        extra_fields: Additional key-value pairs to include in the XML error response.
    """

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 403,
        extra_fields: dict[str, str] | None = None,
        detail: str | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            code: S3 error code.
            message: Error description.
            http_status: HTTP status code (default 403).
            extra_fields: Optional extra XML fields.
            detail: Optional log-only description.
        """
        self.detail = detail if detail is not None else message
        super().__init__(self.detail)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra_fields = extra_fields or {}


class HeaderParseError(SigV4Error):
    """The Authorization header is absent, malformed, or incomplete."""

    def __init__(self, message: str = "invalid header format") -> None:
        super().__init__(
            code="AuthorizationHeaderMalformed",
            message=f"failed to parse authorization header: {message}",
            http_status=400,
        )
        self.reason = message


class MalformedQueryError(SigV4Error):
    """The raw query string cannot be parsed."""

    def __init__(self, message: str = "invalid query string") -> None:
        super().__init__(
            code="InvalidArgument",
            message=f"failed to parse query parameters: {message}",
            http_status=400,
        )


class UnknownCredentialError(SigV4Error):
    """No configured credential matches the access key id, region and service."""

    def __init__(self, access_key_id: str = "", region: str = "", service: str = "") -> None:
        super().__init__(
            code="InvalidAccessKeyId",
            message=(
                f"unknown access key id: {access_key_id!r}, "
                f"region: {region!r}, service: {service!r}"
            ),
            extra_fields={"AWSAccessKeyId": access_key_id} if access_key_id else {},
        )
        self.access_key_id = access_key_id
        self.region = region
        self.service = service


class MissingSignedHeaderError(SigV4Error):
    """A header listed in SignedHeaders is not present on the request."""

    def __init__(self, header_name: str = "") -> None:
        super().__init__(
            code="AccessDenied",
            message=f"missing signed header: {header_name!r}",
        )
        self.header_name = header_name


class InvalidTimestampError(SigV4Error):
    """The x-amz-date value is not in yyyymmddThhmmssZ format."""

    def __init__(self, value: str = "") -> None:
        super().__init__(
            code="AccessDenied",
            message=f"failed to parse time from header: {value!r}",
        )


class ClockSkewError(SigV4Error):
    """The request timestamp is older than the allowed clock skew."""

    def __init__(self, message: str = "request timestamp is too old") -> None:
        super().__init__(
            code="RequestTimeTooSkewed",
            message=f"request time too skewed: {message}",
        )


class SignatureMismatchError(SigV4Error):
    """The recomputed Authorization header does not match the received one.

    The candidate headers carry a valid signature for the request, so they only
    appear in ``detail`` and never in the client-facing ``message``.

    Attributes:
        expected: The two candidate header strings (no space / one space after commas).
        received: The header value supplied by the client.
    """

    def __init__(self, expected: tuple[str, str] = ("", ""), received: str = "") -> None:
        super().__init__(
            code="SignatureDoesNotMatch",
            message=(
                "The request signature we calculated does not match "
                "the signature you provided."
            ),
            detail=(
                f"signature mismatch: expected {expected[0]!r} or {expected[1]!r}, "
                f"got {received!r}"
            ),
        )
        self.expected = expected
        self.received = received


class NotAuthenticatedError(SigV4Error):
    """A request reached a protected route without a verified credential."""

    def __init__(self) -> None:
        super().__init__(
            code="AccessDenied",
            message="request was not authenticated",
        )
