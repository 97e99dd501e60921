import pytest

from workflowbot.access import AccessControl
from workflowbot.config import ConfigError


class TestAccessControl:
    @pytest.mark.parametrize("user_id", [1, 42, 123456789, "987"])
    def test_empty_list_allows_everyone(self, user_id):
        access = AccessControl()
        assert access.is_open
        assert access.is_allowed(user_id)

    def test_listed_users_only(self):
        access = AccessControl([100, 200])
        assert access.is_allowed(100)
        assert access.is_allowed(200)
        assert not access.is_allowed(300)
        assert not access.is_allowed(0)

    def test_string_ids_match_numeric_entries(self):
        access = AccessControl([100])
        assert access.is_allowed("100")
        assert not access.is_allowed("abc")

    def test_from_csv(self):
        access = AccessControl.from_csv(" 1, 2 ,,3 ")
        assert access.is_allowed(2)
        assert not access.is_allowed(4)
        assert not access.is_open

    def test_from_csv_empty(self):
        assert AccessControl.from_csv("").is_open

    def test_from_csv_rejects_garbage(self):
        with pytest.raises(ConfigError):
            AccessControl.from_csv("1,bob")
