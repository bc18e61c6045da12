from amplie_backend.utils.phone_utils import extract_phone_from_jid, normalize_phone_number, phone_to_jid


def test_normalize_phone_number_keeps_digits_in_order():
    assert normalize_phone_number("+55 (11) 91234-5678") == "5511912345678"


def test_normalize_phone_number_variants():
    assert normalize_phone_number("55 21 99999-8888") == "5521999998888"
    assert normalize_phone_number("5521999998888") == "5521999998888"
    assert normalize_phone_number(" +1 (415) 555.0100 ") == "14155550100"
    assert normalize_phone_number("") == ""
    assert normalize_phone_number(None) == ""
    assert normalize_phone_number("abc") == ""


def test_normalize_phone_number_adds_no_country_code():
    assert normalize_phone_number("(11) 91234-5678") == "11912345678"


def test_jid_helpers():
    assert extract_phone_from_jid("5511999999999@s.whatsapp.net") == "5511999999999"
    assert extract_phone_from_jid("5511999999999:12@s.whatsapp.net") == "5511999999999"
    assert extract_phone_from_jid("") == ""
    assert phone_to_jid("+55 11 99999-9999") == "5511999999999@s.whatsapp.net"
    assert phone_to_jid("") == ""
