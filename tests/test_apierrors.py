import pytest

from k0sinttest.apierrors import (
    Status,
    StatusError,
    StatusReason,
    UnexpectedObjectError,
    from_object,
    is_resource_expired,
    new_bad_request,
    new_resource_expired,
    new_timeout_error,
    new_too_many_requests,
    reason_for_error,
    suggests_client_delay,
)


def test_reason_values_match_api_strings():
    assert StatusReason.EXPIRED.value == "Expired"
    assert StatusReason.TOO_MANY_REQUESTS.value == "TooManyRequests"
    assert StatusReason("ServiceUnavailable") is StatusReason.SERVICE_UNAVAILABLE


def test_resource_expired():
    err = new_resource_expired("injected resource version too old")
    assert str(err) == "injected resource version too old"
    assert err.status.code == 410
    assert err.status.reason is StatusReason.EXPIRED
    assert is_resource_expired(err)


def test_bad_request_is_not_expired():
    err = new_bad_request("injected")
    assert str(err) == "injected"
    assert err.status.code == 400
    assert reason_for_error(err) is StatusReason.BAD_REQUEST
    assert not is_resource_expired(err)


def test_timeout_error_message_and_delay():
    err = new_timeout_error("server unexpectedly didn't close the watch", 1)
    assert str(err) == "Timeout: server unexpectedly didn't close the watch"
    assert err.status.code == 504
    assert reason_for_error(err) is StatusReason.TIMEOUT
    assert suggests_client_delay(err) == 1


def test_too_many_requests_delay():
    err = new_too_many_requests("slow down", 7)
    assert err.status.code == 429
    assert suggests_client_delay(err) == 7
    assert suggests_client_delay(new_too_many_requests("slow down", 0)) is None


def test_server_timeout_with_details_suggests_delay_even_when_zero():
    err = StatusError(
        Status(reason=StatusReason.SERVER_TIMEOUT, retry_after_seconds=0)
    )
    assert suggests_client_delay(err) == 0


def test_no_details_no_delay():
    assert suggests_client_delay(new_bad_request("nope")) is None
    assert suggests_client_delay(ValueError("plain")) is None
    assert suggests_client_delay(None) is None


def test_reason_for_plain_error_is_unknown():
    assert reason_for_error(ValueError("x")) is StatusReason.UNKNOWN
    assert not is_resource_expired(RuntimeError("x"))


def test_reason_found_through_cause_chain():
    inner = new_resource_expired("gone")
    try:
        try:
            raise inner
        except StatusError as exc:
            raise RuntimeError("watch error") from exc
    except RuntimeError as outer:
        assert is_resource_expired(outer)
        assert reason_for_error(outer) is StatusReason.EXPIRED


def test_delay_found_through_cause_chain():
    outer = RuntimeError("wrapped")
    outer.__cause__ = new_too_many_requests("busy", 3)
    assert suggests_client_delay(outer) == 3


def test_from_object_status():
    status = new_bad_request("injected").status
    err = from_object(status)
    assert isinstance(err, StatusError)
    assert err.status == status
    assert str(err) == "injected"


def test_from_object_other():
    obj = {"kind": "Secret"}
    err = from_object(obj)
    assert isinstance(err, UnexpectedObjectError)
    assert err.object is obj
    assert str(err).startswith("unexpected object: ")


def test_status_error_can_be_raised_and_caught():
    err = new_bad_request("injected")
    assert str(err) == "injected"
    assert err.status.reason is StatusReason.BAD_REQUEST
    assert err.status.code == 400
    with pytest.raises(StatusError) as excinfo:
        raise err
    assert excinfo.value is err