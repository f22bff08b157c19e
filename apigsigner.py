########################################################################################################################

"""Cloud API gateway request signing (SDK-HMAC-SHA256)."""

########################################################################################################################

import typing as T  # isort: split

import datetime
import hashlib
import hmac
from abc import ABC, abstractmethod
from urllib.parse import quote

import httpx
import pytz

########################################################################################################################

SIGN_ALGORITHM = "SDK-HMAC-SHA256"
BASIC_DATE_FORMAT = "%Y%m%dT%H%M%SZ"

HEADER_X_DATE = "X-Sdk-Date"
HEADER_CONTENT_SHA256 = "X-Sdk-Content-Sha256"
HEADER_AUTHORIZATION = "Authorization"

UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"

########################################################################################################################


class SignError(httpx.RequestError):
    """A request could not be signed and was not sent."""


class RequestSigner(ABC):
    @abstractmethod
    def sign(self, request: httpx.Request, access_key: str, secret_key: str) -> None:
        """Add authentication headers to the request in place.

        Must be deterministic for a fixed timestamp and must not remove headers it does not own.

        Raises:
            SignError: the request cannot be signed
        """

        raise NotImplementedError


########################################################################################################################


def _escape(s: str) -> str:
    return quote(s, safe="-_.~")


def canonical_uri(request: httpx.Request) -> str:
    uri = "/".join(_escape(segment) for segment in request.url.path.split("/"))
    if not uri.endswith("/"):
        uri += "/"

    return uri


def canonical_query_string(request: httpx.Request) -> str:
    return "&".join(f"{_escape(k)}={_escape(v)}" for k, v in sorted(request.url.params.multi_items()))


def signed_header_names(request: httpx.Request) -> T.List[str]:
    # Authorization is the signer's own output
    return sorted({k for k, _ in request.headers.multi_items()} - {HEADER_AUTHORIZATION.lower()})


def canonical_headers(request: httpx.Request, signed_headers: T.List[str]) -> str:
    lines = []
    for key in signed_headers:
        for value in sorted(request.headers.get_list(key)):
            lines.append(f"{key}:{value.strip()}")

    return "\n".join(lines) + "\n"


def payload_hash(request: httpx.Request) -> str:
    if request.headers.get(HEADER_CONTENT_SHA256) == UNSIGNED_PAYLOAD:
        return UNSIGNED_PAYLOAD

    return hashlib.sha256(request.read()).hexdigest()


def canonical_request(request: httpx.Request, signed_headers: T.List[str]) -> str:
    return "\n".join(
        [
            request.method,
            canonical_uri(request),
            canonical_query_string(request),
            canonical_headers(request, signed_headers),
            ";".join(signed_headers),
            payload_hash(request),
        ]
    )


def string_to_sign(canonical: str, timestamp: str) -> str:
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{SIGN_ALGORITHM}\n{timestamp}\n{digest}"


def sign_string(secret_key: str, data: str) -> str:
    return hmac.new(secret_key.encode("utf-8"), data.encode("utf-8"), hashlib.sha256).hexdigest()


########################################################################################################################


class ApigSigner(RequestSigner):
    """
    Signs requests with an access key/secret key pair.

    The request gets an X-Sdk-Date timestamp (an existing one is kept, which makes
    the signature reproducible) and an Authorization header of the form
    "SDK-HMAC-SHA256 Access=..., SignedHeaders=..., Signature=...".
    """

    def __init__(self, clock: T.Optional[T.Callable[[], datetime.datetime]] = None):
        self._clock = clock or (lambda: datetime.datetime.now(pytz.utc))

    def _timestamp(self, request: httpx.Request) -> str:
        timestamp = request.headers.get(HEADER_X_DATE)
        if timestamp is not None:
            try:
                datetime.datetime.strptime(timestamp, BASIC_DATE_FORMAT)

            except ValueError as exc:
                raise SignError(f"invalid {HEADER_X_DATE} header: '{timestamp}'", request=request) from exc

            return timestamp

        timestamp = self._clock().astimezone(pytz.utc).strftime(BASIC_DATE_FORMAT)
        request.headers[HEADER_X_DATE] = timestamp
        return timestamp

    def sign(self, request: httpx.Request, access_key: str, secret_key: str) -> None:
        if not access_key or not secret_key:
            raise SignError("access key and secret key are required to sign requests", request=request)

        timestamp = self._timestamp(request)
        signed_headers = signed_header_names(request)
        canonical = canonical_request(request, signed_headers)
        signature = sign_string(secret_key, string_to_sign(canonical, timestamp))

        request.headers[HEADER_AUTHORIZATION] = (
            f"{SIGN_ALGORITHM} Access={access_key}, SignedHeaders={';'.join(signed_headers)}, Signature={signature}"
        )


########################################################################################################################
