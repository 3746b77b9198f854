from datetime import datetime, timezone
from decimal import Decimal
from urllib.parse import parse_qsl, urlsplit

import pytest
import requests

from busbooking.core.errors import ExternalUnavailable, SignatureError
from busbooking.services import vnpay_client
from busbooking.services.vnpay_client import canonical_query, map_response_code

from conftest import FakeResponse, signed_query_answer


def _query(url: str) -> dict:
    return dict(parse_qsl(urlsplit(url).query, keep_blank_values=True))


def _signed_callback(client, **overrides) -> dict:
    params = {
        "vnp_TmnCode": "TESTTMN1",
        "vnp_TxnRef": "order-1",
        "vnp_Amount": "15000000",
        "vnp_ResponseCode": "00",
        "vnp_TransactionStatus": "00",
        "vnp_TransactionNo": "14012345",
        "vnp_BankCode": "NCB",
        "vnp_OrderInfo": "Thanh toan ve BK12345678",
        "vnp_PayDate": "20250301143000",
    }
    params.update(overrides)
    params["vnp_SecureHash"] = client.sign(params)
    return params


def test_canonical_query_sorts_and_encodes():
    q = canonical_query({"b": "x y", "a": "1/2", "c": None})
    assert q == "a=1%2F2&b=x+y"


def test_payment_url_carries_signed_params(vnpay):
    now = datetime(2025, 3, 1, 7, 0, tzinfo=timezone.utc)
    req = vnpay.build_payment_url("order-1", Decimal("150000"), "Thanh toan ve BK1", "10.0.0.1", now=now)
    params = _query(req.url)

    assert params["vnp_Amount"] == "15000000"
    assert params["vnp_TxnRef"] == "order-1"
    assert params["vnp_TmnCode"] == "TESTTMN1"
    # wall time in Vietnam
    assert params["vnp_CreateDate"] == "20250301140000"
    assert params["vnp_ExpireDate"] == "20250301141500"
    assert req.expires_at == datetime(2025, 3, 1, 7, 15, tzinfo=timezone.utc)

    signature = params.pop("vnp_SecureHash")
    assert signature == vnpay.sign(params)


def test_payment_url_round_trips_through_verification(vnpay):
    req = vnpay.build_payment_url("order-9", Decimal("99000"), "Thanh toan ve BK9", "127.0.0.1", bank_code="NCB")
    params = _query(req.url)
    params["vnp_ResponseCode"] = "00"
    params.pop("vnp_SecureHash")
    params["vnp_SecureHash"] = vnpay.sign(params)
    verified = vnpay.verify_callback(params)
    assert verified.order_id == "order-9"
    assert verified.amount == Decimal("99000")


def test_verify_accepts_genuine_callback(vnpay):
    verified = vnpay.verify_callback(_signed_callback(vnpay))
    assert verified.order_id == "order-1"
    assert verified.amount == Decimal("150000")
    assert verified.result == vnpay_client.SUCCESS
    assert verified.transaction_no == "14012345"
    # 14:30 in Vietnam
    assert verified.pay_date == datetime(2025, 3, 1, 7, 30, tzinfo=timezone.utc)


def test_verify_ignores_hash_type_and_case(vnpay):
    params = _signed_callback(vnpay)
    params["vnp_SecureHash"] = params["vnp_SecureHash"].upper()
    params["vnp_SecureHashType"] = "HmacSHA512"
    assert vnpay.verify_callback(params).order_id == "order-1"


@pytest.mark.parametrize("field,value", [
    ("vnp_Amount", "15000001"),
    ("vnp_ResponseCode", "01"),
    ("vnp_TxnRef", "order-2"),
])
def test_verify_rejects_tampered_field(vnpay, field, value):
    params = _signed_callback(vnpay)
    params[field] = value
    with pytest.raises(SignatureError):
        vnpay.verify_callback(params)


def test_verify_rejects_flipped_signature_byte(vnpay):
    params = _signed_callback(vnpay)
    sig = params["vnp_SecureHash"]
    params["vnp_SecureHash"] = sig[:-1] + ("0" if sig[-1] != "0" else "1")
    with pytest.raises(SignatureError):
        vnpay.verify_callback(params)


def test_verify_rejects_missing_signature(vnpay):
    params = _signed_callback(vnpay)
    del params["vnp_SecureHash"]
    with pytest.raises(SignatureError):
        vnpay.verify_callback(params)


def test_verify_rejects_other_secret(vnpay):
    other = vnpay_client.VNPayClient(vnpay_client.VNPayConfig(
        tmn_code="TESTTMN1", hash_secret="SOMEONEELSE", pay_url="", return_url="", api_url="",
    ))
    with pytest.raises(SignatureError):
        vnpay.verify_callback(_signed_callback(other))


@pytest.mark.parametrize("code,status,expected", [
    ("00", "00", vnpay_client.SUCCESS),
    ("00", None, vnpay_client.SUCCESS),
    ("00", "02", vnpay_client.OTHER),
    ("24", None, vnpay_client.USER_CANCELLED),
    ("51", None, vnpay_client.INSUFFICIENT_FUNDS),
    ("11", None, vnpay_client.EXPIRED),
    ("75", None, vnpay_client.BANK_MAINTENANCE),
    ("07", None, vnpay_client.OTHER),
    (None, None, vnpay_client.OTHER),
])
def test_response_code_mapping(code, status, expected):
    assert map_response_code(code, status) == expected


def test_query_transaction_signs_request(vnpay, monkeypatch):
    seen = {}

    def fake_post(url, json, timeout):
        seen.update(json)
        return FakeResponse(signed_query_answer(vnp_TxnRef="order-1", vnp_TransactionStatus="00", vnp_Amount="5000000"))

    monkeypatch.setattr(vnpay_client.requests, "post", fake_post)
    out = vnpay.query_transaction("order-1", datetime(2025, 3, 1, 7, 0, tzinfo=timezone.utc))

    assert out["vnp_TransactionStatus"] == "00"
    assert seen["vnp_Command"] == "querydr"
    assert seen["vnp_TransactionDate"] == "20250301140000"
    data = "|".join([
        seen["vnp_RequestId"], seen["vnp_Version"], seen["vnp_Command"], seen["vnp_TmnCode"],
        seen["vnp_TxnRef"], seen["vnp_TransactionDate"], seen["vnp_CreateDate"],
        seen["vnp_IpAddr"], seen["vnp_OrderInfo"],
    ])
    assert seen["vnp_SecureHash"] == vnpay_client._hmac_sha512_hex(vnpay.cfg.hash_secret, data)


def test_query_answer_without_signature_is_rejected(vnpay, monkeypatch):
    answer = {"vnp_ResponseCode": "00", "vnp_TxnRef": "order-1", "vnp_Amount": "15000000", "vnp_TransactionStatus": "00"}
    monkeypatch.setattr(vnpay_client.requests, "post", lambda *a, **kw: FakeResponse(answer))
    with pytest.raises(SignatureError):
        vnpay.query_transaction("order-1", datetime.now(timezone.utc))


@pytest.mark.parametrize("field,value", [
    ("vnp_TransactionStatus", "02"),
    ("vnp_Amount", "1"),
    ("vnp_TxnRef", "order-2"),
])
def test_query_answer_tampered_is_rejected(vnpay, monkeypatch, field, value):
    answer = signed_query_answer(vnp_TxnRef="order-1", vnp_Amount="15000000", vnp_TransactionStatus="00")
    answer[field] = value
    monkeypatch.setattr(vnpay_client.requests, "post", lambda *a, **kw: FakeResponse(answer))
    with pytest.raises(SignatureError):
        vnpay.query_transaction("order-1", datetime.now(timezone.utc))


@pytest.mark.parametrize("answer", [
    {"vnp_ResponseCode": "91", "vnp_Message": "Transaction not found"},
    {"vnp_ResponseCode": "94", "vnp_TxnRef": "order-1", "vnp_Amount": "15000000"},
    {"vnp_ResponseCode": "97", "vnp_Message": "Invalid checksum"},
    {},
])
def test_query_lookup_error_is_not_an_answer(vnpay, monkeypatch, answer):
    monkeypatch.setattr(vnpay_client.requests, "post", lambda *a, **kw: FakeResponse(answer))
    with pytest.raises(ExternalUnavailable) as ei:
        vnpay.query_transaction("order-1", datetime.now(timezone.utc))
    assert ei.value.extra["gatewayCode"] == (answer.get("vnp_ResponseCode") or None)


@pytest.mark.parametrize("failure", [
    requests.ConnectionError("down"),
    requests.Timeout("slow"),
])
def test_query_transaction_unreachable(vnpay, monkeypatch, failure):
    def fake_post(*a, **kw):
        raise failure

    monkeypatch.setattr(vnpay_client.requests, "post", fake_post)
    with pytest.raises(ExternalUnavailable):
        vnpay.query_transaction("order-1", datetime.now(timezone.utc))


def test_query_transaction_http_error(vnpay, monkeypatch):
    monkeypatch.setattr(vnpay_client.requests, "post", lambda *a, **kw: FakeResponse({}, status=502))
    with pytest.raises(ExternalUnavailable):
        vnpay.query_transaction("order-1", datetime.now(timezone.utc))


def test_callback_from_query():
    assert vnpay_client.callback_from_query({"vnp_TransactionStatus": "01"}) is None
    assert vnpay_client.callback_from_query({"vnp_ResponseCode": "00"}) is None

    paid = vnpay_client.callback_from_query({
        "vnp_TxnRef": "order-1", "vnp_Amount": "5000000", "vnp_TransactionStatus": "00", "vnp_TransactionNo": "77",
    })
    assert paid.result == vnpay_client.SUCCESS
    assert paid.amount == Decimal("50000")

    failed = vnpay_client.callback_from_query({"vnp_TxnRef": "order-1", "vnp_Amount": "5000000", "vnp_TransactionStatus": "02"})
    assert failed.result == vnpay_client.OTHER
