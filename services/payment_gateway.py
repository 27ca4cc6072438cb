"""
Payment gateway adapter - talks to ShurjoPay over HTTP
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

import httpx

from core.config import ShurjoPayConfig
from core.errors import GatewayRejected, GatewayUnavailable
from models.payment import PaymentInitiation, PaymentOutcome, PaymentRequest, PaymentResult

logger = logging.getLogger(__name__)

TOKEN_OK_CODE = "200"
VERIFY_OK_CODE = "1000"
# 토큰 만료 직전 갱신 여유 시간 (초)
TOKEN_EXPIRY_MARGIN = 30


class PaymentGateway:
    """Two round trips against a payment processor: start a checkout, then verify it."""

    def initiate(self, request: PaymentRequest) -> PaymentInitiation:
        raise NotImplementedError

    def verify(self, gateway_order_id: str) -> PaymentResult:
        raise NotImplementedError

    def close(self) -> None:
        pass


class ShurjoPayGateway(PaymentGateway):
    # ShurjoPay REST API 어댑터
    # 네트워크 오류/타임아웃은 GatewayUnavailable (결과 불명), 명확한 실패 응답은 GatewayRejected

    def __init__(self, config: ShurjoPayConfig, client: Optional[httpx.Client] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config
        # 직접 만든 클라이언트만 close()에서 닫음
        self._owns_client = client is None
        self.client = client or httpx.Client(base_url=config.endpoint, timeout=config.timeout)
        self.clock = clock
        self._token: Optional[Dict[str, Any]] = None
        self._token_expires_at = 0.0
        # Flask 워커 스레드들이 토큰 캐시를 공유
        self._token_lock = threading.Lock()

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def initiate(self, request: PaymentRequest) -> PaymentInitiation:
        token = self._get_token(request.order_id)
        payload = {
            "prefix": self.config.prefix,
            "token": token["token"],
            "return_url": self.config.return_url,
            "cancel_url": self.config.cancel_url,
            "store_id": token.get("store_id"),
        }
        payload.update(request.to_dict())

        execute_url = token.get("execute_url") or "/api/secret-pay"
        data = self._post(execute_url, payload, order_id=request.order_id, token=token)

        if not isinstance(data, dict) or not data.get("checkout_url") or not data.get("sp_order_id"):
            code, message = self._error_details(data)
            raise GatewayRejected(f"Payment could not be initiated: {message}",
                                  order_id=request.order_id, gateway_code=code)

        logger.info("Initiated payment %s for order %s", data["sp_order_id"], request.order_id)
        return PaymentInitiation(
            checkout_url=data["checkout_url"],
            gateway_order_id=data["sp_order_id"],
            raw_status=data.get("transactionStatus")
        )

    def verify(self, gateway_order_id: str) -> PaymentResult:
        token = self._get_token()
        data = self._post("/api/verification", {"order_id": gateway_order_id}, token=token)

        # 검증 결과는 리스트로 반환됨
        record = data[0] if isinstance(data, list) and data else data
        if not isinstance(record, dict):
            raise GatewayRejected(f"Unexpected verification response for {gateway_order_id}")

        code = self._code(record.get("sp_code"))
        if code != VERIFY_OK_CODE and not record.get("bank_status"):
            _, message = self._error_details(record)
            raise GatewayRejected(f"Verification rejected: {message}", gateway_code=code)

        bank_status = record.get("bank_status") or None
        result = PaymentResult(
            gateway_order_id=record.get("order_id") or gateway_order_id,
            outcome=PaymentOutcome.from_bank_status(bank_status),
            bank_status=bank_status,
            gateway_code=code,
            gateway_message=record.get("sp_message") or record.get("message"),
            method=record.get("method"),
            timestamp=record.get("date_time"),
            transaction_status=record.get("transaction_status")
        )
        logger.info("Verified payment %s: %s", gateway_order_id, result.outcome.value)
        return result

    def _get_token(self, order_id: Optional[str] = None) -> Dict[str, Any]:
        with self._token_lock:
            return self._fetch_token(order_id)

    def _fetch_token(self, order_id: Optional[str]) -> Dict[str, Any]:
        # 캐시된 토큰이 유효하면 재사용
        if self._token and self.clock() < self._token_expires_at:
            return self._token

        data = self._send("/api/get_token", {
            "username": self.config.username,
            "password": self.config.password
        }, order_id=order_id)

        if not isinstance(data, dict) or not data.get("token"):
            code, message = self._error_details(data)
            raise GatewayRejected(f"Gateway authentication failed: {message}",
                                  order_id=order_id, gateway_code=code)

        self._token = data
        expires_in = float(data.get("expires_in") or 0)
        self._token_expires_at = self.clock() + max(expires_in - TOKEN_EXPIRY_MARGIN, 0)
        return data

    def _post(self, path: str, payload: Dict[str, Any], token: Dict[str, Any],
              order_id: Optional[str] = None) -> Any:
        headers = {"Authorization": f"{token.get('token_type') or 'Bearer'} {token['token']}"}
        try:
            return self._send(path, payload, headers=headers, order_id=order_id)
        except GatewayRejected as error:
            if error.gateway_code != "401":
                raise
            # 토큰 만료 - 한 번만 다시 발급받아 재시도
            self._invalidate_token(token)
            token = self._get_token(order_id)
            headers = {"Authorization": f"{token.get('token_type') or 'Bearer'} {token['token']}"}
            if "token" in payload:
                payload = dict(payload, token=token["token"])
            return self._send(path, payload, headers=headers, order_id=order_id)

    def _invalidate_token(self, token: Dict[str, Any]) -> None:
        with self._token_lock:
            # 다른 스레드가 이미 새 토큰을 받았으면 그대로 둠
            if self._token is token:
                self._token = None

    def _send(self, path: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None,
              order_id: Optional[str] = None) -> Any:
        try:
            response = self.client.post(path, json=payload, headers=headers)
        except httpx.TimeoutException as error:
            logger.warning("ShurjoPay timed out on %s: %s", path, error)
            raise GatewayUnavailable(f"Payment gateway timed out ({path})", order_id=order_id)
        except httpx.TransportError as error:
            logger.warning("ShurjoPay unreachable on %s: %s", path, error)
            raise GatewayUnavailable(f"Payment gateway unreachable ({path})", order_id=order_id)

        if response.status_code >= 500:
            logger.warning("ShurjoPay returned %s on %s", response.status_code, path)
            raise GatewayUnavailable(
                f"Payment gateway error {response.status_code} ({path})", order_id=order_id
            )
        if response.status_code >= 400:
            raise GatewayRejected(f"Payment gateway refused the request ({response.status_code})",
                                  order_id=order_id, gateway_code=str(response.status_code))

        try:
            return response.json()
        except ValueError:
            raise GatewayRejected(f"Malformed response from payment gateway ({path})",
                                  order_id=order_id)

    @staticmethod
    def _code(value: Any) -> Optional[str]:
        return str(value) if value is not None else None

    def _error_details(self, data: Any):
        if isinstance(data, list) and data:
            data = data[0]
        if not isinstance(data, dict):
            return None, "empty response"
        message = data.get("sp_message") or data.get("message") or data.get("msg") or "unknown error"
        return self._code(data.get("sp_code")), message
