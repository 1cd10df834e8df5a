"""QuickBooks Online API client with token resolution, 429 backoff and error classification."""
import json
import logging
import time
from collections.abc import Callable
from datetime import date
from typing import Any

import requests
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt

from ..common.errors import NeedsReauthError, QuickBooksApiError, RateLimitedError
from ..common.http import is_json_response, request_with_retry
from ..config.loader import QuickBooksConfig, cfg
from ..utils.rate_limit import calculate_backoff, parse_quickbooks_rate_limit
from ..utils.tokens import TokenManager

logger = logging.getLogger(__name__)

REPORT_ENDPOINTS = {
    "profit_and_loss": "ProfitAndLoss",
    "balance_sheet": "BalanceSheet",
    "cash_flow": "CashFlow",
    "ar_aging": "AgedReceivables",
    "ap_aging": "AgedPayables",
    "chart_of_accounts": "AccountList",
}

ACCOUNTING_METHODS = ("Cash", "Accrual")


def parse_error_body(body: Any) -> tuple[str | None, str | None, str | None]:
    """
    Extract (code, message, detail) from a QuickBooks error body.

    Handles the ``Fault.Error[0]`` envelope (either key casing of
    message/detail) and a flat ``{code, message, detail}`` object.
    Non-JSON text becomes the message.
    """
    if isinstance(body, (bytes, str)):
        text = body.decode("utf-8", "replace") if isinstance(body, bytes) else body
        try:
            body = json.loads(text)
        except ValueError:
            return None, text.strip() or None, None

    if not isinstance(body, dict):
        return None, None, None

    source = body
    fault = body.get("Fault") or body.get("fault")
    if isinstance(fault, dict):
        errors = fault.get("Error") or fault.get("error") or []
        if isinstance(errors, dict):
            errors = [errors]
        if errors and isinstance(errors[0], dict):
            source = errors[0]

    code = source.get("code")
    return (
        str(code) if code is not None else None,
        source.get("message") or source.get("Message"),
        source.get("detail") or source.get("Detail"),
    )


def escape_query_value(value: str) -> str:
    """Escape a literal for a QuickBooks query statement."""
    return value.replace("'", "''")


class QuickBooksClient:
    """Authenticated QuickBooks API client for one provider app, serving many tenants."""

    def __init__(
        self,
        token_manager: TokenManager,
        config: QuickBooksConfig,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        max_rate_limit_retries: int | None = None,
        backoff_base: float | None = None,
        max_retry_after: float | None = None,
    ):
        """Initialize the client.

        Args:
            token_manager: Resolves a valid access token and realm id per tenant
            config: QuickBooks app configuration (environment, timeout, minor version)
            session: Requests session, created when omitted
            sleep: Sleep function used between 429 retries
            max_rate_limit_retries: Retries after a 429 before giving up (default 3)
            backoff_base: Base delay for exponential backoff in seconds (default 2)
            max_retry_after: Cap applied to a provider Retry-After in seconds (default 60)
        """
        self.token_manager = token_manager
        self.config = config
        self.session = session or requests.Session()
        self._sleep = sleep
        self.max_rate_limit_retries = (
            max_rate_limit_retries
            if max_rate_limit_retries is not None
            else int(cfg("quickbooks.http.max_rate_limit_retries", 3))
        )
        self.backoff_base = (
            backoff_base
            if backoff_base is not None
            else float(cfg("quickbooks.http.backoff_base_seconds", 2))
        )
        self.max_retry_after = (
            max_retry_after
            if max_retry_after is not None
            else float(cfg("quickbooks.http.max_retry_after_seconds", 60))
        )

    def request(
        self,
        tenant_id: str,
        path: str,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        body: Any = None,
    ) -> Any:
        """Make an authenticated API request for a tenant.

        Args:
            tenant_id: Tenant whose connection supplies the token and realm id
            path: API path, may contain ``{realmId}``, e.g. ``/v3/company/{realmId}/query``
            method: HTTP method
            params: Query parameters
            body: JSON request body

        Returns:
            Parsed JSON for JSON responses, otherwise the response text

        Raises:
            NoConnectionError: Tenant is not connected
            NeedsReauthError: Refresh failed or the provider returned 401
            RateLimitedError: 429 persisted past the retry budget
            QuickBooksApiError: Any other non-2xx response
        """
        token = self.token_manager.get_valid_access_token(tenant_id)

        url = self.config.api_base_url + path.replace("{realmId}", token.realm_id)
        query = dict(params or {})
        if self.config.minor_version and "minorversion" not in query:
            query["minorversion"] = self.config.minor_version

        headers = {
            "Authorization": f"Bearer {token.access_token}",
            "Accept": "application/json",
        }
        if body is not None:
            headers["Content-Type"] = "application/json"

        retrying = Retrying(
            stop=stop_after_attempt(self.max_rate_limit_retries + 1),
            wait=self._rate_limit_wait,
            retry=retry_if_exception_type(RateLimitedError),
            sleep=self._sleep,
            before_sleep=self._log_rate_limit,
            reraise=True,
        )

        try:
            return retrying(self._send, method, url, query, body, headers)
        except RateLimitedError as e:
            e.attempts = self.max_rate_limit_retries + 1
            logger.error(
                f"QuickBooks rate limit persisted after {e.attempts} attempts "
                f"for tenant {tenant_id}: {e}"
            )
            raise

    def _send(
        self,
        method: str,
        url: str,
        params: dict[str, Any],
        body: Any,
        headers: dict[str, str],
    ) -> Any:
        response = request_with_retry(
            self.session,
            method,
            url,
            params=params or None,
            json=body,
            headers=headers,
            timeout=self.config.timeout,
        )
        status = response.status_code

        if status == 401:
            raise NeedsReauthError("QuickBooks rejected the access token (401)")

        if status == 429:
            code, message, detail = parse_error_body(self._read_body(response))
            info = parse_quickbooks_rate_limit(response)
            raise RateLimitedError(
                message or detail or "Rate limit exceeded (429)",
                code=code,
                detail=detail,
                retry_after=info.retry_after,
                intuit_tid=info.intuit_tid,
            )

        if not 200 <= status < 300:
            code, message, detail = parse_error_body(self._read_body(response))
            logger.error(f"QuickBooks API error {status} for {method} {url}: {message or detail}")
            raise QuickBooksApiError(
                message or detail or f"QuickBooks API error {status}",
                status,
                code=code,
                detail=detail,
            )

        return self._read_body(response)

    @staticmethod
    def _read_body(response: requests.Response) -> Any:
        if is_json_response(response):
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text

    def _rate_limit_wait(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception()
        retry_after = getattr(error, "retry_after", None)
        return calculate_backoff(
            retry_state.attempt_number,
            retry_after=retry_after,
            base_delay=self.backoff_base,
            max_retry_after=self.max_retry_after,
        )

    @staticmethod
    def _log_rate_limit(retry_state: RetryCallState) -> None:
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        error = retry_state.outcome.exception()
        tid = getattr(error, "intuit_tid", None)
        logger.warning(
            f"QuickBooks rate limited (429), retry {retry_state.attempt_number} in {wait:.1f}s"
            + (f" (intuit_tid={tid})" if tid else "")
        )

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def fetch_report(
        self,
        tenant_id: str,
        report_type: str,
        start_date: date | str,
        end_date: date | str,
        accounting_method: str | None = None,
    ) -> Any:
        """Fetch one report for a date range.

        Args:
            tenant_id: Tenant to fetch for
            report_type: One of REPORT_ENDPOINTS keys, e.g. ``profit_and_loss``
            start_date: Inclusive range start
            end_date: Inclusive range end
            accounting_method: ``Cash`` or ``Accrual`` (configured default when omitted)
        """
        try:
            report_name = REPORT_ENDPOINTS[report_type]
        except KeyError:
            raise ValueError(f"Unknown report type: {report_type}") from None

        method = accounting_method or self.config.accounting_method
        if method not in ACCOUNTING_METHODS:
            raise ValueError(f"Unknown accounting method: {method}")

        params = {
            "start_date": str(start_date),
            "end_date": str(end_date),
            "accounting_method": method,
        }
        logger.debug(f"Fetching {report_name} for tenant {tenant_id} ({start_date} to {end_date})")
        return self.request(tenant_id, f"/v3/company/{{realmId}}/reports/{report_name}", params=params)

    # ------------------------------------------------------------------
    # Entity queries
    # ------------------------------------------------------------------

    def query(self, tenant_id: str, statement: str) -> dict[str, Any]:
        """Run a QuickBooks query statement and return the ``QueryResponse`` object."""
        result = self.request(tenant_id, "/v3/company/{realmId}/query", params={"query": statement})
        if not isinstance(result, dict):
            return {}
        response = result.get("QueryResponse")
        if isinstance(response, list):
            response = response[0] if response else {}
        return response if isinstance(response, dict) else {}

    def get_customers(self, tenant_id: str, customer_id: str | None = None) -> list[dict[str, Any]]:
        """All customers, or the one with ``customer_id``."""
        statement = "SELECT * FROM Customer"
        if customer_id:
            statement += f" WHERE Id = '{escape_query_value(customer_id)}'"
        return _as_list(self.query(tenant_id, statement).get("Customer"))

    def get_invoices(self, tenant_id: str, customer_id: str) -> list[dict[str, Any]]:
        """Invoices billed to a customer."""
        statement = (
            f"SELECT * FROM Invoice WHERE CustomerRef = '{escape_query_value(customer_id)}'"
        )
        return _as_list(self.query(tenant_id, statement).get("Invoice"))


def _as_list(value: Any) -> list[dict[str, Any]]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]
