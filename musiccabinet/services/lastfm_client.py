from __future__ import annotations

import json
import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from http.client import HTTPException
from typing import Any, cast
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode, urlsplit
from urllib.request import Request, urlopen

from musiccabinet.models.webservice_contracts import WebserviceInvocation, WebserviceResponse
from musiccabinet.services.throttle_service import Throttle
from musiccabinet.services.webservice_history_service import WebserviceHistoryService
from musiccabinet.telemetry import TelemetryClient

LOGGER = logging.getLogger("musiccabinet.lastfm")

TRANSPORT_FAILURE_STATUS = -1

# Last.fm API error codes worth retrying: operation failed, service offline,
# temporary error, rate limit exceeded.
RECOVERABLE_API_ERROR_CODES: frozenset[int] = frozenset({8, 11, 16, 29})
RECOVERABLE_HTTP_STATUS_CODES: frozenset[int] = frozenset({408, 429})


class LastFmConfigurationError(RuntimeError):
    pass


@dataclass(frozen=True)
class CallPolicy:
    log_invocation: bool = True
    call_attempts: int = 3
    retry_sleep_seconds: float = 300.0


def is_api_error_recoverable(error_code: int) -> bool:
    return error_code in RECOVERABLE_API_ERROR_CODES


def is_http_recoverable(status_code: int) -> bool:
    return status_code >= 500 or status_code in RECOVERABLE_HTTP_STATUS_CODES


class LastFmClient:
    """
    Executes Last.fm web service requests.

    Logged requests are checked against invocation history first, and their
    outcome is written back: success starts a new cache lifetime, an
    unrecoverable error quarantines the invocation for a month, and a
    recoverable error that outlived all attempts leaves history untouched so
    the next scheduled pass may try again.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        user_agent: str,
        http_timeout_seconds: float,
        history_service: WebserviceHistoryService,
        throttle: Throttle | None,
        policy: CallPolicy | None = None,
        stop_event: threading.Event | None = None,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self._user_agent = user_agent
        self._http_timeout_seconds = max(1.0, float(http_timeout_seconds))
        self._history_service = history_service
        self._throttle = throttle
        self._policy = policy if policy is not None else CallPolicy()
        self._stop_event = stop_event if stop_event is not None else threading.Event()
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    @property
    def policy(self) -> CallPolicy:
        return self._policy

    def execute_ws_request(
        self,
        invocation: WebserviceInvocation,
        params: Mapping[str, str],
    ) -> WebserviceResponse:
        if not self._policy.log_invocation:
            return self.invoke_call(params)
        return self._invoke_logged_call(invocation, params)

    def _invoke_logged_call(
        self,
        invocation: WebserviceInvocation,
        params: Mapping[str, str],
    ) -> WebserviceResponse:
        if not self._history_service.is_webservice_invocation_allowed(invocation):
            self._telemetry.emit(
                "lastfm.invocation.skipped",
                method=invocation.call_type.method,
            )
            return WebserviceResponse.not_invoked()

        with self._telemetry.span(
            "lastfm.invocation",
            announce=False,
            method=invocation.call_type.method,
        ) as outcome:
            response = self.invoke_call(params)
            outcome["status_code"] = response.status_code
            if response.success:
                self._history_service.log_webservice_invocation(invocation)
                outcome["outcome"] = "ok"
            elif not response.recoverable:
                self._history_service.quarantine_webservice_invocation(invocation)
                outcome["outcome"] = "quarantined"
            else:
                LOGGER.warning(
                    "couldn't invoke %s status=%s message=%s",
                    invocation,
                    response.status_code,
                    response.message,
                )
                outcome["outcome"] = "exhausted"
        return response

    def invoke_call(self, params: Mapping[str, str]) -> WebserviceResponse:
        """
        Call the web service, retrying recoverable failures.

        Between recoverable failures the client waits `retry_sleep_seconds`;
        setting the stop event cuts the wait short and returns the last
        failure as exhausted.
        """
        url = self.build_url(params)
        attempts = max(1, self._policy.call_attempts)
        response = WebserviceResponse.not_invoked()
        for attempt in range(1, attempts + 1):
            if self._throttle is not None:
                self._throttle.await_allowance()
            response = self._invoke_single_call(url)
            if response.success or not response.recoverable:
                break
            if attempt == attempts:
                break
            LOGGER.info(
                "recoverable last.fm failure attempt=%s/%s status=%s; retrying in %ss",
                attempt,
                attempts,
                response.status_code,
                self._policy.retry_sleep_seconds,
            )
            if self._stop_event.wait(max(0.0, self._policy.retry_sleep_seconds)):
                LOGGER.info("last.fm retry wait interrupted by shutdown attempt=%s", attempt)
                break
        return response

    def build_url(self, params: Mapping[str, str]) -> str:
        if self._api_key is None:
            raise LastFmConfigurationError("Last.fm API key is not configured.")
        parsed = urlsplit(self._base_url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise LastFmConfigurationError(f"Could not create Last.fm URI from {self._base_url!r}.")
        query: dict[str, str] = {str(key): str(value) for key, value in params.items()}
        query["api_key"] = self._api_key
        query["format"] = "json"
        return f"{self._base_url}?{urlencode(query)}"

    def _invoke_single_call(self, url: str) -> WebserviceResponse:
        try:
            body = _fetch_text(
                url,
                timeout_seconds=self._http_timeout_seconds,
                headers={"User-Agent": self._user_agent, "Accept": "application/json"},
            )
        except HTTPError as exc:
            envelope = _decode_json_object(_read_error_body(exc))
            error_code = _error_code(envelope)
            if error_code is not None:
                return WebserviceResponse.failed(
                    recoverable=is_api_error_recoverable(error_code),
                    status_code=error_code,
                    message=_error_message(envelope) or str(exc),
                )
            return WebserviceResponse.failed(
                recoverable=is_http_recoverable(exc.code),
                status_code=exc.code,
                message=str(exc),
            )
        except (URLError, HTTPException, OSError) as exc:
            LOGGER.warning("could not fetch data from last.fm", exc_info=True)
            reason = exc.reason if isinstance(exc, URLError) else exc
            return WebserviceResponse.failed(
                recoverable=True,
                status_code=TRANSPORT_FAILURE_STATUS,
                message=f"Call failed due to {reason}",
            )
        return parse_response_envelope(body)


def parse_response_envelope(body: str) -> WebserviceResponse:
    envelope = _decode_json_object(body)
    if not envelope:
        return WebserviceResponse.failed(
            recoverable=True,
            status_code=TRANSPORT_FAILURE_STATUS,
            message="Malformed response from Last.fm.",
        )
    error_code = _error_code(envelope)
    if error_code is not None:
        return WebserviceResponse.failed(
            recoverable=is_api_error_recoverable(error_code),
            status_code=error_code,
            message=_error_message(envelope) or f"Last.fm error {error_code}",
        )
    return WebserviceResponse.succeeded(envelope)


def _fetch_text(
    url: str,
    *,
    timeout_seconds: float,
    headers: dict[str, str] | None = None,
) -> str:
    request = Request(url, headers=headers or {}, method="GET")
    with urlopen(request, timeout=timeout_seconds) as response:
        return response.read().decode("utf-8", errors="replace")


def _read_error_body(exc: HTTPError) -> str:
    if exc.fp is None:
        return ""
    try:
        return exc.read().decode("utf-8", errors="replace")
    except (HTTPException, OSError):
        LOGGER.debug("could not read last.fm error body status=%s", exc.code, exc_info=True)
        return ""


def _decode_json_object(raw_body: str) -> dict[str, Any]:
    if not raw_body.strip():
        return {}
    try:
        parsed = json.loads(raw_body)
    except json.JSONDecodeError:
        return {}
    if isinstance(parsed, dict):
        parsed_dict = cast(dict[object, object], parsed)
        return {key: value for key, value in parsed_dict.items() if isinstance(key, str)}
    return {}


def _error_code(envelope: Mapping[str, Any]) -> int | None:
    raw = envelope.get("error")
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        try:
            return int(raw.strip())
        except ValueError:
            return None
    return None


def _error_message(envelope: Mapping[str, Any]) -> str | None:
    message = envelope.get("message")
    if isinstance(message, str) and message.strip():
        return message.strip()
    return None
