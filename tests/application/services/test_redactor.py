# tests/application/services/test_redactor.py
import pytest
from application.services.redactor import mask_dict, mask_multimap, mask_value


class TestMaskValue:
    @pytest.mark.parametrize(
        "key",
        ["password", "passwd", "pass", "authorization", "proxy-authorization", "cookie", "set-cookie", "x-api-key", "api-key"],
    )
    def test_sensitive_keys(self, key):
        assert mask_value(key, "secret") == "********"

    def test_mask_case_insensitive(self):
        assert mask_value("Authorization", "Bearer token") == "********"
        assert mask_value("X-API-KEY", "k") == "********"

    def test_no_mask_regular_key(self):
        assert mask_value("Accept", "application/json") == "application/json"

    def test_mask_none_value(self):
        assert mask_value("password", None) is None


class TestMaskDict:
    def test_mask_dict_with_sensitive_data(self):
        result = mask_dict({"User-Agent": "Courier", "Authorization": "Basic abc"})

        assert result == {"User-Agent": "Courier", "Authorization": "********"}

    def test_mask_dict_none(self):
        assert mask_dict(None) == {}


class TestMaskMultimap:
    def test_each_value_is_masked(self):
        result = mask_multimap({"Set-Cookie": ["a=1", "b=2"], "Content-Type": ["text/html"]})

        assert result == {"Set-Cookie": ["********", "********"], "Content-Type": ["text/html"]}
