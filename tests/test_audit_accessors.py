import pytest

from member_admin.services.audit_rows import (
    as_number,
    as_string,
    details_of,
    is_email,
    is_uuid,
    normalize_email,
    normalize_id,
    read_string_array,
    values_equal,
)

from conftest import OLA_ID


@pytest.mark.parametrize("value,expected", [
    ("  Ola ", "Ola"),
    ("", None),
    ("   ", None),
    (12, None),
    (None, None),
    (["a"], None),
])
def test_as_string(value, expected):
    assert as_string(value) == expected


@pytest.mark.parametrize("value,expected", [
    (3, 3),
    (2.5, 2.5),
    (4.0, 4),
    ("2", 2),
    (" 7 ", 7),
    ("1.5", 1.5),
    ("abc", None),
    ("", None),
    (True, None),
    (float("nan"), None),
    ("inf", None),
    (None, None),
])
def test_as_number(value, expected):
    assert as_number(value) == expected


def test_as_number_returns_int_for_integral_strings():
    assert isinstance(as_number("3"), int)


def test_normalizers():
    assert normalize_id("  abc ") == "abc"
    assert normalize_id("   ") is None
    assert normalize_id(None) is None
    assert normalize_email(" Ola@Example.NO ") == "ola@example.no"
    assert normalize_email("") is None


def test_validators():
    assert is_uuid(OLA_ID)
    assert is_uuid(OLA_ID.upper())
    assert not is_uuid("11111111-1111-6111-8111-111111111111")
    assert not is_uuid("not-a-uuid")
    assert not is_uuid(None)
    assert is_email("ola@example.no")
    assert not is_email("ola@example")
    assert not is_email("ola example@x.no")
    assert not is_email(None)


def test_details_of_tolerates_wrong_shapes():
    assert details_of({"details": None}) == {}
    assert details_of({"details": ["x"]}) == {}
    assert details_of({"details": "text"}) == {}
    assert details_of({}) == {}
    assert details_of({"details": {"a": 1}}) == {"a": 1}


def test_read_string_array_keeps_only_non_empty_strings():
    details = {"ids": ["a", " ", 3, None, " b "], "bad": "a,b"}
    assert read_string_array(details, "ids") == ["a", "b"]
    assert read_string_array(details, "bad") == []
    assert read_string_array(details, "missing") == []


def test_values_equal():
    assert values_equal(1, 1)
    assert values_equal(1, 1.0)
    assert not values_equal(1, True)
    assert not values_equal(None, False)
    assert values_equal({"a": [1, 2]}, {"a": [1, 2]})
    assert not values_equal({"a": 1}, {"a": 2})
    assert values_equal(None, None)


def test_as_number_rejects_ints_too_large_for_float():
    assert as_number(10**400) is None
    assert as_number(-(10**400)) is None
    assert as_number(10**20) == 10**20


def test_validators_reject_trailing_newline():
    assert not is_uuid(OLA_ID + "\n")
    assert not is_email("ola@example.no\n")
