from livepoll.services.poll_options import FALLBACK_OPTIONS, decode_options


def test_decode_native_list() -> None:
    decoded = decode_options(["Red", "Blue", "Green"])

    assert decoded.options == ["Red", "Blue", "Green"]
    assert decoded.fallback is False
    assert decoded.error is None


def test_decode_json_string() -> None:
    decoded = decode_options('["Red", "Blue"]')

    assert decoded.options == ["Red", "Blue"]
    assert not decoded.fallback


def test_decode_bytes() -> None:
    assert decode_options(b'["a", "b"]').options == ["a", "b"]


def test_decode_numeric_key_map_is_ordered_by_key() -> None:
    decoded = decode_options({"2": "Third", "0": "First", "1": "Second", "10": "Eleventh"})

    assert decoded.options == ["First", "Second", "Third", "Eleventh"]


def test_decode_json_map_string() -> None:
    assert decode_options('{"0": "yes", "1": "no"}').options == ["yes", "no"]


def test_decode_non_numeric_map_keeps_insertion_order() -> None:
    assert decode_options({"a": "Apple", "b": "Banana"}).options == ["Apple", "Banana"]


def test_invalid_json_falls_back() -> None:
    decoded = decode_options("Red, Blue", poll_id="p1")

    assert decoded.fallback is True
    assert decoded.options == list(FALLBACK_OPTIONS)
    assert "JSON" in (decoded.error or "")


def test_single_option_falls_back() -> None:
    decoded = decode_options(["only one"])

    assert decoded.fallback is True
    assert decoded.options == ["Option 1", "Option 2"]


def test_none_and_nested_values_fall_back() -> None:
    assert decode_options(None).fallback is True
    assert decode_options([["nested"], "x"]).fallback is True
    assert decode_options(["", "x"]).fallback is True
