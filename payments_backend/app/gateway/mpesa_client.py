"""
M-Pesa Daraja gateway client.

One explicit client object per process, built from settings at startup and
injected into the services that talk to the gateway:
- STK push (customer payment prompt)
- Transaction reversal

Transport failures, timeouts and unparseable responses raise GatewayError.
A well-formed response that declines the operation raises
GatewayRejectedError. There are no retries.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from payments_backend.app.core.config import Settings
from payments_backend.app.core.exceptions import (
    ConfigError,
    GatewayError,
    GatewayRejectedError,
)
from payments_backend.app.core.reliability import CircuitBreaker
from payments_backend.app.gateway.credentials import (
    encrypt_security_credential,
    format_timestamp,
    generate_password,
)
from payments_backend.app.gateway.token_cache import MpesaTokenCache

logger = logging.getLogger(__name__)

SANDBOX_BASE_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_BASE_URL = "https://api.safaricom.co.ke"

STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
REVERSAL_PATH = "/mpesa/reversal/v1/request"

STK_TRANSACTION_TYPE = "CustomerPayBillOnline"
STK_TRANSACTION_DESC = "Order Payment"
REVERSAL_COMMAND_ID = "TransactionReversal"
RECEIVER_IDENTIFIER_TYPE = "11"


def format_amount(amount: float) -> str:
    return f"{amount:.2f}"


class MpesaConfig(BaseModel):
    consumer_key: str
    consumer_secret: str
    business_short_code: str = ""
    pass_key: str = ""
    callback_url: str = ""
    environment: str = "sandbox"
    timeout_seconds: float = 30.0
    initiator_name: Optional[str] = None
    initiator_password: Optional[str] = None
    public_key_path: Optional[str] = None
    reversal_result_url: str = ""
    reversal_timeout_url: str = ""

    @property
    def base_url(self) -> str:
        if self.environment == "production":
            return PRODUCTION_BASE_URL
        return SANDBOX_BASE_URL

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["MpesaConfig"]:
        if not settings.mpesa_consumer_key or not settings.mpesa_consumer_secret:
            return None
        return cls(
            consumer_key=settings.mpesa_consumer_key,
            consumer_secret=settings.mpesa_consumer_secret,
            business_short_code=settings.mpesa_business_short_code,
            pass_key=settings.mpesa_pass_key,
            callback_url=settings.mpesa_callback_url,
            environment=settings.mpesa_environment,
            timeout_seconds=settings.mpesa_timeout_seconds,
            initiator_name=settings.mpesa_initiator_name,
            initiator_password=settings.mpesa_initiator_password,
            public_key_path=settings.mpesa_public_key_path,
            reversal_result_url=settings.mpesa_reversal_result_url,
            reversal_timeout_url=settings.mpesa_reversal_timeout_url,
        )


class StkPushResult(BaseModel):
    merchant_request_id: str = Field(alias="MerchantRequestID")
    checkout_request_id: str = Field(alias="CheckoutRequestID")
    response_code: str = Field(alias="ResponseCode")
    response_description: str = Field("", alias="ResponseDescription")
    customer_message: str = Field("", alias="CustomerMessage")


class MpesaClient:

    def __init__(
        self,
        config: MpesaConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        now: Callable[[], datetime] = datetime.now,
        circuit_breaker: Optional[CircuitBreaker] = None,
        token_cache: Optional[MpesaTokenCache] = None,
    ):
        self.config = config
        self._http = http_client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout_seconds),
        )
        self._now = now
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name="mpesa")
        self.tokens = token_cache or MpesaTokenCache(
            self._http, config.consumer_key, config.consumer_secret
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["MpesaClient"]:
        """Build a client, or None when consumer credentials are not configured."""
        config = MpesaConfig.from_settings(settings)
        if config is None:
            return None
        return cls(config)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _post_json(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        token = await self.tokens.get_token()
        try:
            response = await self._http.post(
                path,
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            raise GatewayError(f"gateway request failed: {e}", details={"path": path})

        if response.status_code == 401:
            # Token revoked upstream before its advertised expiry
            self.tokens.invalidate()

        try:
            body = response.json()
        except ValueError:
            raise GatewayError(
                "gateway returned a non-JSON response",
                details={"path": path, "status_code": response.status_code}
            )
        if not isinstance(body, dict):
            raise GatewayError("gateway returned an unexpected response", details={"path": path})

        if "errorMessage" in body:
            raise GatewayRejectedError(
                body.get("errorMessage") or "gateway rejected the request",
                details={"path": path, "error_code": body.get("errorCode")}
            )
        if response.status_code >= 400:
            raise GatewayError(
                "gateway request failed",
                details={"path": path, "status_code": response.status_code}
            )
        return body

    async def initiate_stk_push(self, phone: str, amount: float, invoice_id: str) -> StkPushResult:
        """
        Send a payment prompt to the customer's phone.

        Args:
            phone: MSISDN in 2547XXXXXXXX form
            amount: Amount to charge
            invoice_id: Used as AccountReference, echoed back on the callback

        Returns:
            StkPushResult with the CheckoutRequestID that keys the callback

        Raises:
            GatewayError: transport failure or malformed response
            GatewayRejectedError: gateway declined the push
        """
        timestamp = format_timestamp(self._now())
        short_code = self.config.business_short_code
        payload = {
            "BusinessShortCode": short_code,
            "Password": generate_password(short_code, self.config.pass_key, timestamp),
            "Timestamp": timestamp,
            "TransactionType": STK_TRANSACTION_TYPE,
            "Amount": format_amount(amount),
            "PartyA": phone,
            "PartyB": short_code,
            "PhoneNumber": phone,
            "CallBackURL": self.config.callback_url,
            "AccountReference": invoice_id,
            "TransactionDesc": STK_TRANSACTION_DESC,
        }

        body = await self.circuit_breaker.call(self._post_json, STK_PUSH_PATH, payload)

        try:
            result = StkPushResult.model_validate(body)
        except PydanticValidationError as e:
            raise GatewayError(f"failed to parse STK push response: {e}")

        if result.response_code != "0":
            raise GatewayRejectedError(
                result.response_description or "STK push rejected",
                details={"response_code": result.response_code}
            )

        logger.info(
            "STK push accepted: invoice=%s checkout_request_id=%s",
            invoice_id, result.checkout_request_id
        )
        return result

    async def initiate_reversal(self, phone: str, amount: float, invoice_id: str) -> Dict[str, Any]:
        """
        Ask the gateway to reverse a transaction for an invoice.

        Raises:
            ConfigError: initiator credentials or public key path missing
            CryptoError: security credential could not be produced
            GatewayError: transport failure or malformed response
            GatewayRejectedError: gateway declined the reversal
        """
        if (
            not self.config.initiator_name
            or not self.config.initiator_password
            or not self.config.public_key_path
        ):
            raise ConfigError("M-Pesa reversal credentials are not configured")

        security_credential = encrypt_security_credential(
            self.config.initiator_password, self.config.public_key_path
        )
        short_code = self.config.business_short_code
        payload = {
            "Initiator": self.config.initiator_name,
            "SecurityCredential": security_credential,
            "CommandID": REVERSAL_COMMAND_ID,
            "Amount": format_amount(amount),
            "ReceiverParty": short_code,
            "RecieverIdentifierType": RECEIVER_IDENTIFIER_TYPE,
            "ResultURL": self.config.reversal_result_url,
            "QueueTimeOutURL": self.config.reversal_timeout_url,
            "Remarks": f"Reversal for invoice {invoice_id}",
            "Occasion": invoice_id,
        }

        body = await self.circuit_breaker.call(self._post_json, REVERSAL_PATH, payload)
        logger.info(
            "Reversal accepted by gateway: invoice=%s amount=%.2f phone=%s", invoice_id, amount, phone
        )
        return body
