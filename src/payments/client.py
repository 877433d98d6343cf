"""HTTP client for the backend payment functions.

Used by the checkout flow. Calls are single-shot: any transport failure or
error response surfaces immediately as :class:`ProviderError`.
"""

from __future__ import annotations

from typing import Any

import httpx

from src.models import CustomerRecord, PaymentIntent, PaymentIntentStatus, PaymentMethodSummary
from src.payments.errors import ProviderError, VerificationError
from src.payments.functions import CreatePaymentIntentRequest, summarize_methods


class BackendClient:
    """Invokes ``/functions/<name>`` routes with a bearer token."""

    def __init__(
        self,
        base_url: str,
        token: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._transport = transport
        self._timeout = timeout

    async def invoke(self, name: str, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._base_url}/functions/{name}"
        headers = {"Authorization": f"Bearer {self._token}"}
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.post(url, json=body, headers=headers, timeout=self._timeout)
        except httpx.HTTPError as e:
            raise ProviderError("Payment backend unavailable") from e

        try:
            data = resp.json()
        except ValueError:
            data = {}

        if resp.status_code >= 400:
            message = data.get("error") if isinstance(data, dict) else None
            raise ProviderError(
                message or f"Backend error ({resp.status_code})", code=str(resp.status_code),
            )
        if not isinstance(data, dict):
            raise ProviderError("Malformed payment backend response")
        return data

    async def create_payment_intent(self, request: CreatePaymentIntentRequest) -> PaymentIntent:
        data = await self.invoke("create-payment-intent", request.model_dump())
        try:
            return PaymentIntent(
                id=data["id"],
                client_secret=data["client_secret"],
                amount=data["amount"],
                currency=data["currency"],
                status=PaymentIntentStatus(data["status"]),
                customer_id=data.get("customer_id"),
                metadata=request.metadata,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError("Malformed payment backend response") from e

    async def create_customer(
        self, email: str, name: str, metadata: dict[str, str] | None = None,
    ) -> CustomerRecord:
        data = await self.invoke(
            "create-customer", {"email": email, "name": name, "metadata": metadata or {}},
        )
        return CustomerRecord.model_validate(data)

    async def get_payment_methods(self, customer_id: str) -> list[PaymentMethodSummary]:
        data = await self.invoke("get-payment-methods", {"customer_id": customer_id})
        return summarize_methods(data)

    async def issue_verification(self, challenge_id: str, recipient: str) -> None:
        await self.invoke(
            "issue-verification-code", {"challenge_id": challenge_id, "recipient": recipient},
        )

    async def verify_code(self, challenge_id: str, code: str) -> bool:
        try:
            data = await self.invoke(
                "verify-code", {"challenge_id": challenge_id, "code": code},
            )
        except ProviderError as e:
            if e.code == "400":
                raise VerificationError(str(e)) from e
            raise
        return bool(data.get("verified"))
