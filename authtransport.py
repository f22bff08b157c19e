########################################################################################################################

"""Transport chain for authenticated cluster API access: header injection, request signing, debug logging."""

########################################################################################################################

import typing as T  # isort: split

import logging
from dataclasses import dataclass, field

import httpx

from apigsigner import ApigSigner, RequestSigner, SignError
from httpxlogtransport import HttpxLogTransport

########################################################################################################################

L = logging.getLogger("authtransport")

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

ACCESS_KEY_CONFIGURATION = "hw_access_key"
SECRET_KEY_CONFIGURATION = "hw_secret_key"
PROJECT_ID_CONFIGURATION = "hw_project_id"
SECURITY_TOKEN_CONFIGURATION = "hw_security_token"

PROJECT_ID_HEADER = "X-Project-Id"
SECURITY_TOKEN_HEADER = "X-Security-Token"

TransportWrapper = T.Callable[[httpx.BaseTransport], httpx.BaseTransport]

########################################################################################################################


class ConfigError(ValueError):
    """Credential or provider configuration is malformed; the client must not be built."""


########################################################################################################################


@dataclass(frozen=True, kw_only=True)
class Credential:
    access_key: str = ""
    secret_key: str = field(default="", repr=False)
    project_id: str = ""
    security_token: str = field(default="", repr=False)

    def validate(self) -> None:
        if not self.project_id and (self.access_key or self.secret_key):
            raise ConfigError(
                f'"{PROJECT_ID_CONFIGURATION}", "{ACCESS_KEY_CONFIGURATION}" and '
                f'"{SECRET_KEY_CONFIGURATION}" are required'
            )


########################################################################################################################


class HeaderInjectionTransport(httpx.BaseTransport):
    """Sets a fixed set of caller headers on every request, overwriting existing values."""

    def __init__(self, transport: httpx.BaseTransport, headers: T.Mapping[str, str]):
        if not headers:
            raise ValueError("HeaderInjectionTransport needs at least one header")

        self.transport = transport
        self.headers: T.Tuple[T.Tuple[str, str], ...] = tuple(headers.items())

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        for key, value in self.headers:
            request.headers[key] = value

        return self.transport.handle_request(request)

    def close(self) -> None:
        self.transport.close()


class SigningTransport(httpx.BaseTransport):
    """Adds project/session headers and signs the request; unsigned requests never go downstream."""

    def __init__(self, transport: httpx.BaseTransport, credential: Credential, signer: RequestSigner):
        self.transport = transport
        self.credential = credential
        self.signer = signer

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        request.headers[PROJECT_ID_HEADER] = self.credential.project_id
        if self.credential.security_token:
            request.headers[SECURITY_TOKEN_HEADER] = self.credential.security_token

        try:
            self.signer.sign(request, self.credential.access_key, self.credential.secret_key)

        except SignError as exc:
            L.error(f"error signing request {request.method} {request.url}: {exc}")
            raise

        return self.transport.handle_request(request)

    def close(self) -> None:
        self.transport.close()


########################################################################################################################


def build_wrappers(
    credential: Credential,
    headers: T.Optional[T.Mapping[str, str]] = None,
    *,
    signer: T.Optional[RequestSigner] = None,
    name: str = "Kubernetes",
    logger: T.Optional[logging.Logger] = None,
    debug_enabled: T.Optional[T.Callable[[], bool]] = None,
    skip_paths: T.Collection[str] = (),
) -> T.List[TransportWrapper]:
    """
    Validate the credential and list the chain wrappers, innermost first.

    Raises:
        ConfigError: partial credential (keys without a project id)
    """

    credential.validate()

    def debug_log_wrapper(rt: httpx.BaseTransport) -> httpx.BaseTransport:
        return HttpxLogTransport(rt, name, logger=logger, debug_enabled=debug_enabled, skip_paths=skip_paths)

    wrappers: T.List[TransportWrapper] = [debug_log_wrapper]

    if credential.project_id:
        L.log(TRACE, "use cloud certification transport for request")
        request_signer = signer if signer is not None else ApigSigner()
        wrappers.append(lambda rt: SigningTransport(rt, credential, request_signer))

    else:
        L.log(TRACE, "do not use cloud certification transport for request")

    if headers:
        header_set = dict(headers)
        wrappers.append(lambda rt: HeaderInjectionTransport(rt, header_set))

    return wrappers


def build_transport(
    credential: Credential,
    headers: T.Optional[T.Mapping[str, str]],
    base: httpx.BaseTransport,
    **kwargs: T.Any,
) -> httpx.BaseTransport:
    """
    Compose the transport chain around a base transport.

    Resulting order, outermost first: header injection (if headers), signing (if project id),
    debug logging, base. Build once and reuse the result for every request.

    Args:
        credential: cloud credential, an empty project id disables signing
        headers: caller headers set on every request
        base: transport doing the network exchange
        **kwargs: forwarded to build_wrappers()

    Returns:
        Outermost transport of the chain

    Raises:
        ConfigError: partial credential
    """

    transport = base
    for wrap in build_wrappers(credential, headers, **kwargs):
        transport = wrap(transport)

    return transport


########################################################################################################################
