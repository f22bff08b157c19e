########################################################################################################################

import typing as T  # isort: split

import logging

import httpx

from apigsigner import RequestSigner
from authtransport import ConfigError, build_transport
from httpxlogtransport import transport_set_logger
from providerconfig import ProviderConfig

########################################################################################################################

L = logging.getLogger("kubeclient")
transport_set_logger(L)

USER_AGENT = "hwkube-transport/0.1.0"

# the OpenAPI document is too large to be worth dumping
OPENAPI_V2_PATH = "/openapi/v2"

DEFAULT_TIMEOUT = 30.0

########################################################################################################################


class KubeClient:
    """
    Cluster API client using the authenticated transport chain.

    The chain is built once here and shared by every request made through this client.
    """

    def __init__(
        self,
        config: ProviderConfig,
        transport: T.Optional[httpx.BaseTransport] = None,
        signer: T.Optional[RequestSigner] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Args:
            config: provider configuration, host is required
            transport: base transport, defaults to httpx.HTTPTransport()
            signer: request signer, defaults to ApigSigner

        Raises:
            ConfigError: missing host or partial credential
        """

        if not config.host:
            raise ConfigError("Cluster host is required (set 'host' or KUBE_HOST)")

        self.config = config
        chain = build_transport(
            config.credential(),
            config.external_headers,
            transport or httpx.HTTPTransport(),
            signer=signer,
            skip_paths=(OPENAPI_V2_PATH,),
        )
        self._client = httpx.Client(
            base_url=config.host,
            transport=chain,
            headers={"user-agent": USER_AGENT},
            timeout=timeout,
        )

    def request(self, method: str, path: str, **kwargs: T.Any) -> httpx.Response:
        r = self._client.request(method, path, **kwargs)
        if r.is_error:
            L.error(f"{method} {path} -> {r}: '{r.text[:500]}'")

        r.raise_for_status()
        return r

    def get_json(self, path: str, **kwargs: T.Any) -> T.Any:
        return self.request("GET", path, **kwargs).json()

    def get_version(self) -> T.Dict[str, T.Any]:
        """Read the server version; doubles as a credential check."""

        version = self.get_json("/version")
        L.info(f"Connected to {self.config.host}: {version.get('gitVersion', 'unknown')}")
        return version

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "KubeClient":
        return self

    def __exit__(self, *exc_info: T.Any) -> None:
        self.close()


########################################################################################################################
