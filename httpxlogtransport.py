######################################################################################################################

"""HTTP transport wrapper that dumps requests/responses to the debug log with secret redaction."""

######################################################################################################################

import json
import logging
import re
import typing as T

import httpx

######################################################################################################################

# global, re-assignable
L = logging.getLogger("httpx.transport")


def transport_set_logger(logger: logging.Logger) -> None:
    # pylint: disable-next=global-statement
    global L
    if logger is not None:
        L = logger


######################################################################################################################

LOG_REQ_MSG = """{name} API Request Details:
----[ REQUEST ]---------------------------------------
{dump}
------------------------------------------------------"""

LOG_RESP_MSG = """{name} API Response Details:
----[ RESPONSE ]--------------------------------------
{dump}
------------------------------------------------------"""

# matched case-sensitively, header names are dumped in canonical form
SENSITIVE_KEYWORDS = ("Authorization", "X-Security-Token", "stringData", "data", "secretName")

REDACTION_MASK = "******"

_KEYWORDS_RE = "|".join(re.escape(k) for k in SENSITIVE_KEYWORDS)

# "key": "value"
_QUOTED_VALUE_RE = re.compile(rf'("(?:{_KEYWORDS_RE})"):[ \t]*"(?:[^"\\]|\\.)*"')

# Key: value
_BARE_VALUE_RE = re.compile(rf"({_KEYWORDS_RE}):[ \t]*(.*?)$", re.MULTILINE)


class LogFormatError(RuntimeError):
    """Raised when a request or response cannot be dumped for the debug log."""


######################################################################################################################


def remove_sensitive(s: str) -> str:
    """Mask values of sensitive keys in JSON and header-style text."""

    s = _QUOTED_VALUE_RE.sub(rf'\1: "{REDACTION_MASK}"', s)
    return _BARE_VALUE_RE.sub(rf"\1: {REDACTION_MASK}", s)


def _reject_constant(name: str) -> T.NoReturn:
    raise ValueError(f"{name} is not valid JSON")


def is_valid_json(text: str) -> bool:
    try:
        json.loads(text, parse_constant=_reject_constant)

    except (ValueError, RecursionError):
        return False

    return True


def indent_json(text: str, indent: str = "  ") -> str:
    """Re-indent valid JSON text, keeping every literal exactly as written."""

    out: T.List[str] = []
    depth = 0
    in_string = escaped = False
    just_opened = False

    for ch in text:
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False

            elif ch == "\\":
                escaped = True

            elif ch == '"':
                in_string = False

            continue

        if ch in " \t\r\n":
            continue

        if ch in "}]":
            depth -= 1
            # empty containers stay on one line
            out.append(ch if just_opened else f"\n{indent * depth}{ch}")
            just_opened = False
            continue

        if just_opened:
            out.append(f"\n{indent * depth}")
            just_opened = False

        if ch in "{[":
            out.append(ch)
            depth += 1
            just_opened = True

        elif ch == ",":
            out.append(f",\n{indent * depth}")

        elif ch == ":":
            out.append(": ")

        else:
            in_string = ch == '"'
            out.append(ch)

    return "".join(out)


def pretty_print_json_lines(raw: bytes) -> str:
    """Pretty-print every line of a dump that is complete JSON, then redact all lines."""

    lines = raw.decode("utf-8", errors="replace").splitlines()
    for i, line in enumerate(lines):
        if is_valid_json(line):
            lines[i] = indent_json(line)

    return "\n".join(remove_sensitive(line) for line in lines)


def canonical_header_key(name: str) -> str:
    # e.g. x-security-token to X-Security-Token
    return "-".join(part[:1].upper() + part[1:].lower() for part in name.split("-"))


def _dump_headers(headers: httpx.Headers) -> T.List[str]:
    return [f"{canonical_header_key(k)}: {v}" for k, v in headers.multi_items()]


def dump_request(request: httpx.Request) -> bytes:
    """Serialize a request in HTTP/1.1 wire form (request line, headers, body)."""

    try:
        # replaces a streaming body with a re-readable one
        body = request.read()
        target = request.url.raw_path.decode("ascii")
        head = [f"{request.method} {target} HTTP/1.1", *_dump_headers(request.headers)]
        return "\r\n".join(head).encode("utf-8") + b"\r\n\r\n" + body

    except Exception as exc:  # pylint: disable=broad-except
        raise LogFormatError(f"cannot dump request: {exc}") from exc


def dump_response(response: httpx.Response) -> bytes:
    """Serialize a response in HTTP/1.1 wire form (status line, headers, decoded body)."""

    try:
        # decodes Content-Encoding, a no-op for responses already read
        response.read()
        status = f"{response.http_version} {response.status_code} {response.reason_phrase}"
        head = [status, *_dump_headers(response.headers)]
        return "\r\n".join(head).encode("utf-8") + b"\r\n\r\n" + response.content

    except Exception as exc:  # pylint: disable=broad-except
        raise LogFormatError(f"cannot dump response: {exc}") from exc


######################################################################################################################


class HttpxLogTransport(httpx.BaseTransport):
    """Transport wrapper that logs full requests/responses at debug level.

    With debug logging off the request is handed to the wrapped transport untouched
    and nothing is dumped. With debug logging on, both directions are dumped in wire
    form, JSON lines are pretty-printed and credential values are masked. Failures
    while dumping are logged as errors and never fail the request.
    """

    def __init__(
        self,
        transport: httpx.BaseTransport,
        name: str = "Kubernetes",
        *,
        logger: T.Optional[logging.Logger] = None,
        debug_enabled: T.Optional[T.Callable[[], bool]] = None,
        skip_paths: T.Collection[str] = (),
    ):
        self.transport = transport
        self.name = name
        self.skip_paths = frozenset(skip_paths)
        self._logger = logger
        self._debug_enabled = debug_enabled

    @property
    def logger(self) -> logging.Logger:
        return self._logger if self._logger is not None else L

    def debug_enabled(self) -> bool:
        if self._debug_enabled is not None:
            return self._debug_enabled()

        return self.logger.isEnabledFor(logging.DEBUG)

    def _should_log(self, request: httpx.Request) -> bool:
        return request.url.path not in self.skip_paths and self.debug_enabled()

    def log_request(self, request: httpx.Request) -> None:
        try:
            dump = pretty_print_json_lines(dump_request(request))
            self.logger.debug(LOG_REQ_MSG.format(name=self.name, dump=dump))

        except LogFormatError as exc:
            self.logger.error(f"{self.name} API Request error: {exc!r}")

    def log_response(self, request: httpx.Request, response: httpx.Response) -> httpx.Response:
        """Buffer the response body, log it, and return an equivalent re-readable response."""

        try:
            # undecoded bytes, still available when a response built from bytes was already read
            raw = b"".join(response.stream)

        finally:
            response.close()

        # raw bytes keep Content-Encoding valid, headers are passed through unchanged
        buffered = httpx.Response(
            status_code=response.status_code,
            headers=response.headers,
            stream=httpx.ByteStream(raw),
            extensions=response.extensions,
            request=request,
        )

        try:
            dump = pretty_print_json_lines(dump_response(buffered))
            self.logger.debug(LOG_RESP_MSG.format(name=self.name, dump=dump))

        except LogFormatError as exc:
            self.logger.error(f"{self.name} API Response error: {exc!r}")

        return buffered

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        """Handle request with logging."""

        if self._should_log(request):
            self.log_request(request)

        response = self.transport.handle_request(request)

        if not self._should_log(request):
            return response

        return self.log_response(request, response)

    def close(self) -> None:
        self.transport.close()
