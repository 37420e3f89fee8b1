import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from blockurls.config import BlockUrlsConfig, create_config
from blockurls.core import (
    FORWARDING_HEADERS,
    IPParseError,
    MatchResult,
    all_private,
    compile_rules,
    compose_url,
    evaluate,
    extract_forwarded_ips,
)

logger = logging.getLogger(__name__)

DEFAULT_NAME = "block-regex-urls"


@dataclass(frozen=True)
class Decision:
    blocked: bool
    status_code: Optional[int] = None
    match: Optional[MatchResult] = None


FORWARD = Decision(blocked=False)


def request_url(request: Request) -> str:
    """Host header + raw request target, exactly as the client sent them."""
    scope = request.scope
    raw_path = scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else scope.get("path", "")
    query = scope.get("query_string", b"").decode("latin-1")
    return compose_url(request.headers.get("host", ""), path, query)


class BlockRegexUrlsMiddleware(BaseHTTPMiddleware):
    """
    Answer requests whose URL matches a block rule with a bare status code.

    Matched requests whose forwarded client IPs are all private/local are let
    through when ``allow_local_requests`` is enabled. Everything else reaches
    the wrapped app untouched.
    """

    def __init__(self, app: ASGIApp, config: Optional[BlockUrlsConfig] = None, name: str = DEFAULT_NAME):
        super().__init__(app)
        config = config if config is not None else create_config()

        self.name = name
        self.rules = compile_rules(config.regex, config.exact_match)
        self.status_code = config.status_code
        self.allow_local_requests = config.allow_local_requests

        if not config.silent_start_up:
            logger.info("%s: regex list: %s", name, config.regex)
            logger.info("%s: exact match list: %s", name, config.exact_match)
            logger.info("%s: status code: %s", name, config.status_code)

    def decide(self, request: Request) -> Decision:
        full_url = request_url(request)
        logger.debug("%s: fullURL: (%s)", self.name, full_url)

        match = evaluate(self.rules, full_url)
        if match is None:
            return FORWARD

        if not self.allow_local_requests:
            self._log_denied(request, full_url, match)
            return Decision(blocked=True, status_code=self.status_code, match=match)

        try:
            ips = extract_forwarded_ips(request.headers)
        except IPParseError as e:
            logger.warning("%s: failed to collect remote ip: %s", self.name, e)
            self._log_denied(request, full_url, match)
            return Decision(blocked=True, status_code=self.status_code, match=match)

        if all_private(ips):
            logger.info(
                "%s: request (%s) matched %s %r but allowed for local IPs %s",
                self.name,
                full_url,
                match.rule_kind,
                match.rule_value,
                [str(ip) for ip in ips],
            )
            return FORWARD

        self._log_denied(request, full_url, match)
        return Decision(blocked=True, status_code=self.status_code, match=match)

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        decision = self.decide(request)
        if decision.blocked:
            return Response(status_code=decision.status_code)
        return await call_next(request)

    def _log_denied(self, request: Request, full_url: str, match: MatchResult) -> None:
        claimed = {h: request.headers.get(h) for h in FORWARDING_HEADERS if h in request.headers}
        logger.warning(
            "%s: request (%s %s) denied by %s %r, forwarded for %s",
            self.name,
            request.method,
            full_url,
            match.rule_kind,
            match.rule_value,
            claimed,
        )
