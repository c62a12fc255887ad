# src/services/backend.py

from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from src.core.errors import (
    AuthenticationError,
    MalformedResponseError,
    UpstreamUnavailableError,
)
from src.utils.tracing import setup_logger_with_tracing

LOGGER = setup_logger_with_tracing(__name__, service_name="account-backend")

UPSTREAM = "account-backend"


def _json_amount(amount: Decimal):
    """Amounts go over the wire as JSON numbers; whole values as ints."""
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)[:200]


class AccountBackend:
    """
    Client for the account backend REST API (auth, holdings, token lifecycle, topics).

    Every method raises on failure; callers on read paths decide whether to
    degrade. The bearer token is passed per call and never stored.
    """

    def __init__(self, http: httpx.AsyncClient, base_url: str):
        self.http = http
        self.base_url = base_url.rstrip("/")

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    @staticmethod
    def _headers(token: Optional[str] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        token: Optional[str] = None,
        json_body: Optional[Dict[str, Any]] = None,
        action: str = "request",
    ) -> Any:
        try:
            response = await self.http.request(
                method, self._url(path), headers=self._headers(token), json=json_body
            )
        except httpx.HTTPError as e:
            LOGGER.error(f"Backend {action} failed to connect: {e}")
            raise UpstreamUnavailableError(
                f"Failed to connect to account backend during {action}: {e}", upstream=UPSTREAM
            ) from e

        if response.is_error:
            detail = _error_detail(response)
            LOGGER.error(f"Backend {action} returned {response.status_code}: {detail}")
            raise UpstreamUnavailableError(
                f"Backend {action} failed ({response.status_code}): {detail}",
                upstream=UPSTREAM,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"Backend {action} returned a non-JSON body", upstream=UPSTREAM
            ) from e

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> str:
        """Exchange credentials for a bearer token. Raises AuthenticationError on any failure."""
        try:
            data = await self._request(
                "POST", "/auth/login", json_body={"email": email, "password": password}, action="login"
            )
        except (UpstreamUnavailableError, MalformedResponseError) as e:
            raise AuthenticationError(f"Login failed: {e.message}", upstream=UPSTREAM) from e

        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise AuthenticationError("Login response did not contain a token", upstream=UPSTREAM)
        return token

    async def get_profile(self, token: str) -> Dict[str, Any]:
        data = await self._request("GET", "/auth/me", token=token, action="profile lookup")
        if not isinstance(data, dict):
            raise MalformedResponseError("Profile response is not an object", upstream=UPSTREAM)
        return data

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------

    async def mint(self, token_code: str, amount: Decimal, token: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/tokens/{token_code.upper()}/mint",
            token=token,
            json_body={"amount": _json_amount(amount)},
            action="mint",
        )

    async def burn(self, token_code: str, amount: Decimal, transaction_id: str, token: str) -> Any:
        return await self._request(
            "POST",
            f"/tokens/{token_code}/burn",
            token=token,
            json_body={"amount": _json_amount(amount), "transactionId": transaction_id},
            action="burn",
        )

    async def sell(
        self, token_code: str, amount: Decimal, account_id: str, private_key: str, token: str
    ) -> Any:
        return await self._request(
            "POST",
            f"/tokens/{token_code}/sell",
            token=token,
            json_body={"amount": _json_amount(amount), "accountId": account_id, "privateKey": private_key},
            action="sell",
        )

    async def deduct_fee(self, reference: str, token: str) -> Any:
        return await self._request(
            "POST",
            f"/tokens/deduct-usdc/{reference}",
            token=token,
            json_body={"transactionId": reference},
            action="fee deduction",
        )

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------

    async def create_topic(
        self, topic_name: str, description: str, topic_memo: str, ledger_topic_id: str, token: str
    ) -> Any:
        return await self._request(
            "POST",
            "/topics/",
            token=token,
            json_body={
                "topicName": topic_name,
                "description": description,
                "topicMemo": topic_memo,
                "hederaTopicId": ledger_topic_id,
            },
            action="topic registration",
        )

    async def add_topic_message(self, ledger_topic_id: str, message: str, token: str) -> Any:
        return await self._request(
            "POST",
            f"/topics/{ledger_topic_id}/messages",
            token=token,
            json_body={"message": message},
            action="topic message",
        )

    async def list_user_topics(self, user_id: str, token: str) -> List[Dict[str, Any]]:
        data = await self._request("GET", f"/topics/user/{user_id}", token=token, action="topic lookup")
        topics = data.get("topics") if isinstance(data, dict) else None
        if not isinstance(topics, list):
            raise MalformedResponseError("Topic lookup response has no topics list", upstream=UPSTREAM)
        return topics
