from __future__ import annotations

from cutroom.classifier.rules import ErrorClassifier, HintRule, format_error, raw_error_message, strip_error_code, with_prefix
from cutroom.errors import MissingCredentialError, RemoteError, extract_error_code


def test_code_is_extracted_and_stripped_from_message() -> None:
    c = ErrorClassifier().classify("[E_APIKEY_MISSING] 未配置 API Key")
    assert c.code == "E_APIKEY_MISSING"
    assert c.message == "未配置 API Key"
    assert c.category == "credential_missing"
    assert "Settings" in c.hint
    assert c.open_settings is True


def test_code_match_is_case_insensitive_and_normalized() -> None:
    assert extract_error_code("  [e_timeout] slow") == "E_TIMEOUT"
    assert strip_error_code("[e_timeout]   slow") == "slow"
    assert extract_error_code("no code here [E_X]") == ""


def test_unknown_error_for_empty_inputs() -> None:
    assert format_error(None) == "Unknown error"
    assert format_error("[E_EMPTY]   ") == "Unknown error"


def test_raw_message_from_dict_shapes() -> None:
    assert raw_error_message({"message": "boom"}) == "boom"
    assert raw_error_message({"error": {"message": "nested"}}) == "nested"
    assert raw_error_message(ValueError()) == "ValueError"


def test_with_prefix_joins_scope_and_stripped_message() -> None:
    assert with_prefix("Save take failed", "[E_HTTP_500] server exploded") == "Save take failed: server exploded"
    assert with_prefix("", "plain") == "plain"


def test_hints_by_code_and_phrase() -> None:
    clf = ErrorClassifier()
    assert clf.classify(RemoteError("[E_HTTP_401] nope")).category == "credential_invalid"
    assert clf.classify("upstream returned 429 Too Many Requests").category == "rate_limited"
    assert clf.classify("context deadline exceeded").category == "timeout"
    assert clf.classify("[E_NETWORK] network error: connection refused").category == "network"
    assert clf.classify("请求超时").category == "timeout"


def test_no_hint_for_unrecognized_errors() -> None:
    c = ErrorClassifier().classify(RuntimeError("disk is full"))
    assert c.hint == ""
    assert c.category == ""
    assert c.open_settings is False


def test_first_matching_rule_wins() -> None:
    # Both "unauthorized" and "timeout" appear; the credential rule is listed first.
    c = ErrorClassifier().classify("unauthorized after timeout")
    assert c.category == "credential_invalid"


def test_code_carried_on_exception_is_used_when_message_has_none() -> None:
    err = RemoteError("limit hit", code="E_HTTP_429")
    assert ErrorClassifier().classify(err).category == "rate_limited"


def test_missing_credential_error_opens_settings() -> None:
    c = ErrorClassifier().classify(MissingCredentialError())
    assert c.code == "E_APIKEY_MISSING"
    assert c.open_settings is True
    assert not c.message.startswith("[")


def test_custom_rules() -> None:
    clf = ErrorClassifier(rules=(HintRule(category="quota", hint="Top up.", phrases=("quota",)),))
    assert clf.classify("Quota exceeded").hint == "Top up."
    assert clf.classify("[E_TIMEOUT] slow").hint == ""
