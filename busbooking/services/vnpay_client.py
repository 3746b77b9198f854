import hashlib
import hmac
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from urllib.parse import quote_plus
import requests

from busbooking.core.config import settings
from busbooking.core.errors import ExternalUnavailable, SignatureError
from busbooking.core.timeutil import VN_TZ, utcnow

logger = logging.getLogger(__name__)
security_log = logging.getLogger("busbooking.security")

VERSION = "2.1.0"
DATE_FMT = "%Y%m%d%H%M%S"
HASH_FIELDS = ("vnp_SecureHash", "vnp_SecureHashType")

# Internal result taxonomy
SUCCESS = "SUCCESS"
USER_CANCELLED = "USER_CANCELLED"
INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
EXPIRED = "EXPIRED"
BANK_MAINTENANCE = "BANK_MAINTENANCE"
OTHER = "OTHER"

_RESPONSE_CODES = {
    "00": SUCCESS,
    "24": USER_CANCELLED,
    "51": INSUFFICIENT_FUNDS,
    "11": EXPIRED,
    "75": BANK_MAINTENANCE,
}


@dataclass
class VNPayConfig:
    tmn_code: str
    hash_secret: str
    pay_url: str
    return_url: str
    api_url: str
    expire_minutes: int = 15
    timeout: int = 25


@dataclass
class PaymentRequest:
    url: str
    order_id: str
    expires_at: datetime


@dataclass
class VerifiedCallback:
    """A callback whose signature checked out. Amount is back in major units."""
    order_id: str
    amount: Decimal
    response_code: str
    transaction_status: str | None
    transaction_no: str | None
    bank_code: str | None
    pay_date: datetime | None
    raw: dict

    @property
    def result(self) -> str:
        return map_response_code(self.response_code, self.transaction_status)


def config_from_settings() -> VNPayConfig:
    return VNPayConfig(
        tmn_code=settings.VNP_TMN_CODE,
        hash_secret=settings.VNP_HASH_SECRET,
        pay_url=settings.VNP_URL,
        return_url=settings.VNP_RETURN_URL,
        api_url=settings.VNP_API_URL,
        expire_minutes=settings.VNP_EXPIRE_MINUTES,
        timeout=settings.VNP_TIMEOUT,
    )


def map_response_code(code: str | None, transaction_status: str | None = None) -> str:
    """Gateway response code -> internal result. SUCCESS needs the transaction status to agree when present."""
    result = _RESPONSE_CODES.get((code or "").strip(), OTHER)
    if result == SUCCESS and transaction_status not in (None, "", "00"):
        return OTHER
    return result


def canonical_query(params: dict) -> str:
    """Sorted by key, values URL-encoded (space as '+'); this exact string is what gets signed."""
    return "&".join(
        f"{k}={quote_plus(str(params[k]), safe='')}"
        for k in sorted(params)
        if params[k] is not None
    )


def _hmac_sha512_hex(secret: str, msg: str) -> str:
    return hmac.new(secret.encode("utf-8"), msg.encode("utf-8"), hashlib.sha512).hexdigest()


def _parse_pay_date(s: str | None) -> datetime | None:
    if not s:
        return None
    try:
        return datetime.strptime(s, DATE_FMT).replace(tzinfo=VN_TZ).astimezone(timezone.utc)
    except ValueError:
        return None


def new_order_id() -> str:
    return uuid.uuid4().hex


class VNPayClient:
    def __init__(self, cfg: VNPayConfig | None = None):
        self.cfg = cfg or config_from_settings()

    def sign(self, params: dict) -> str:
        return _hmac_sha512_hex(self.cfg.hash_secret, canonical_query(params))

    def build_payment_url(
        self,
        order_id: str,
        amount: Decimal,
        order_info: str,
        ip_addr: str,
        bank_code: str | None = None,
        locale: str = "vn",
        now: datetime | None = None,
    ) -> PaymentRequest:
        now = now or utcnow()
        expires_at = now + timedelta(minutes=self.cfg.expire_minutes)
        params = {
            "vnp_Version": VERSION,
            "vnp_Command": "pay",
            "vnp_TmnCode": self.cfg.tmn_code,
            "vnp_Locale": locale,
            "vnp_CurrCode": "VND",
            "vnp_TxnRef": order_id,
            "vnp_OrderInfo": order_info,
            "vnp_OrderType": "other",
            # minor units
            "vnp_Amount": int((Decimal(amount) * 100).to_integral_value()),
            "vnp_ReturnUrl": self.cfg.return_url,
            "vnp_IpAddr": ip_addr or "127.0.0.1",
            "vnp_CreateDate": now.astimezone(VN_TZ).strftime(DATE_FMT),
            "vnp_ExpireDate": expires_at.astimezone(VN_TZ).strftime(DATE_FMT),
        }
        if bank_code:
            params["vnp_BankCode"] = bank_code
        query = canonical_query(params)
        signature = _hmac_sha512_hex(self.cfg.hash_secret, query)
        url = f"{self.cfg.pay_url}?{query}&vnp_SecureHash={signature}"
        logger.info("vnpay url built for order %s amount=%s", order_id, amount)
        return PaymentRequest(url=url, order_id=order_id, expires_at=expires_at)

    def verify_callback(self, raw_params: dict) -> VerifiedCallback:
        """Recompute the signature over everything but the hash fields; raise SignatureError on any mismatch."""
        params = {k: v for k, v in raw_params.items() if k.startswith("vnp_")}
        received = str(params.get("vnp_SecureHash") or "")
        signed = {k: v for k, v in params.items() if k not in HASH_FIELDS}
        expected = self.sign(signed)
        if not received or not hmac.compare_digest(expected.lower(), received.lower()):
            security_log.warning("vnpay callback rejected: bad signature for order %r", params.get("vnp_TxnRef"))
            raise SignatureError("invalid signature")

        order_id = str(params.get("vnp_TxnRef") or "")
        try:
            amount = Decimal(str(params.get("vnp_Amount") or "0")) / 100
        except ArithmeticError:
            raise SignatureError("malformed amount")
        return VerifiedCallback(
            order_id=order_id,
            amount=amount,
            response_code=str(params.get("vnp_ResponseCode") or ""),
            transaction_status=params.get("vnp_TransactionStatus"),
            transaction_no=params.get("vnp_TransactionNo"),
            bank_code=params.get("vnp_BankCode"),
            pay_date=_parse_pay_date(params.get("vnp_PayDate")),
            raw=dict(params),
        )

    def query_transaction(self, order_id: str, transaction_date: datetime, ip_addr: str = "127.0.0.1") -> dict:
        """Ask the gateway for the current state of an order (querydr).

        Returns the gateway's JSON answer once its signature checks out.
        Raises ExternalUnavailable when the gateway cannot be reached or reports
        an error for the lookup, SignatureError when the answer is not signed
        with our secret.
        """
        now = utcnow().astimezone(VN_TZ)
        body = {
            "vnp_RequestId": uuid.uuid4().hex[:32],
            "vnp_Version": VERSION,
            "vnp_Command": "querydr",
            "vnp_TmnCode": self.cfg.tmn_code,
            "vnp_TxnRef": order_id,
            "vnp_OrderInfo": f"Query order {order_id}",
            "vnp_TransactionDate": transaction_date.astimezone(VN_TZ).strftime(DATE_FMT),
            "vnp_CreateDate": now.strftime(DATE_FMT),
            "vnp_IpAddr": ip_addr,
        }
        data = "|".join([
            body["vnp_RequestId"], body["vnp_Version"], body["vnp_Command"], body["vnp_TmnCode"],
            body["vnp_TxnRef"], body["vnp_TransactionDate"], body["vnp_CreateDate"],
            body["vnp_IpAddr"], body["vnp_OrderInfo"],
        ])
        body["vnp_SecureHash"] = _hmac_sha512_hex(self.cfg.hash_secret, data)

        try:
            r = requests.post(self.cfg.api_url, json=body, timeout=self.cfg.timeout)
            r.raise_for_status()
            out = r.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("vnpay querydr failed for order %s: %s", order_id, e)
            raise ExternalUnavailable("payment gateway unavailable, retry later")

        code = str(out.get("vnp_ResponseCode") or "")
        logger.info("vnpay querydr order %s -> %s", order_id, code)
        if code != "00":
            # the lookup itself failed; says nothing about the payment
            raise ExternalUnavailable(
                f"payment gateway could not answer for this order (code {code or 'none'})",
                gatewayCode=code or None,
            )
        self.verify_query_response(out)
        return out

    def verify_query_response(self, out: dict):
        received = str(out.get("vnp_SecureHash") or "")
        expected = _hmac_sha512_hex(self.cfg.hash_secret, query_response_data(out))
        if not received or not hmac.compare_digest(expected.lower(), received.lower()):
            security_log.warning("vnpay querydr answer rejected: bad signature for order %r", out.get("vnp_TxnRef"))
            raise SignatureError("invalid signature on gateway answer")


# querydr vnp_TransactionStatus values
QUERY_STATUS_PENDING = "01"

# Signed fields of a querydr answer, in signing order
QUERY_RESPONSE_FIELDS = (
    "vnp_ResponseId", "vnp_Command", "vnp_ResponseCode", "vnp_Message", "vnp_TmnCode",
    "vnp_TxnRef", "vnp_Amount", "vnp_BankCode", "vnp_PayDate", "vnp_TransactionNo",
    "vnp_TransactionType", "vnp_TransactionStatus", "vnp_OrderInfo", "vnp_PromotionCode",
    "vnp_PromotionAmount",
)


def query_response_data(out: dict) -> str:
    return "|".join("" if out.get(k) is None else str(out[k]) for k in QUERY_RESPONSE_FIELDS)


def callback_from_query(out: dict) -> VerifiedCallback | None:
    """Turn a verified querydr answer into the same shape a callback has.

    None while the gateway still has the order open or reports no status.
    """
    status = str(out.get("vnp_TransactionStatus") or "")
    if status in ("", QUERY_STATUS_PENDING):
        return None
    try:
        amount = Decimal(str(out.get("vnp_Amount") or "0")) / 100
    except ArithmeticError:
        amount = Decimal("0")
    return VerifiedCallback(
        order_id=str(out.get("vnp_TxnRef") or ""),
        amount=amount,
        response_code="00" if status == "00" else status,
        transaction_status=status,
        transaction_no=out.get("vnp_TransactionNo"),
        bank_code=out.get("vnp_BankCode"),
        pay_date=_parse_pay_date(out.get("vnp_PayDate")),
        raw=dict(out),
    )
