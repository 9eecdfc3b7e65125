"""Data model types for s3authgate.

These dataclasses represent the configured credentials and the parsed (or
recomputed) SigV4 Authorization header. All of them are immutable.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Credential:
    """A configured access key.

    Attributes:
        access_key_id: The public access key ID.
        secret_key: The secret used to derive signing keys.
        region: The region the key is valid for (e.g. 'us-east-1').
        service: The service the key is valid for (e.g. 's3').
    """

    access_key_id: str
    secret_key: str
    region: str
    service: str

    def __repr__(self) -> str:
        return (
            f"Credential(access_key_id={self.access_key_id!r}, "
            f"region={self.region!r}, service={self.service!r})"
        )


@dataclass(frozen=True)
class Authorization:
    """The fields of an ``AWS4-HMAC-<algo>`` Authorization header.

    Attributes:
        algorithm: Algorithm suffix after ``AWS4-HMAC-`` (always 'SHA256').
        access_key_id: Access key ID from the credential scope.
        date: Credential scope date (YYYYMMDD).
        region: Credential scope region.
        service: Credential scope service.
        signed_headers: Signed header names, in header order.
        signature: Hex signature.
    """

    algorithm: str
    access_key_id: str
    date: str
    region: str
    service: str
    signed_headers: tuple[str, ...]
    signature: str

    @property
    def credential(self) -> str:
        """The ``Credential=`` value: ``id/date/region/service/aws4_request``."""
        return f"{self.access_key_id}/{self.date}/{self.region}/{self.service}/aws4_request"

    def render(self, pad: str = "") -> str:
        """Render back into header form.

        Args:
            pad: Text inserted after each comma ('' or ' ').

        Returns:
            The Authorization header value.
        """
        return (
            f"AWS4-HMAC-{self.algorithm} Credential={self.credential},"
            f"{pad}SignedHeaders={';'.join(self.signed_headers)},"
            f"{pad}Signature={self.signature}"
        )
