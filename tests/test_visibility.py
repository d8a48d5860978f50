"""Tests for role-scoped visibility."""

from property_chat.services.visibility import Role, VisibilityFilter, resolve_role

from conftest import make_message


def property_messages():
    return [
        make_message("1", 1, sender="S", receiver="B1", content="hi"),
        make_message("2", 2, sender="B1", receiver="S", content="hello"),
        make_message("3", 3, sender="S", receiver="B2", content="hi"),
    ]


class TestResolveRole:
    """Tests for resolve_role."""

    def test_owner(self):
        assert resolve_role("S", "S") is Role.OWNER

    def test_non_owner(self):
        assert resolve_role("B1", "S") is Role.NON_OWNER

    def test_unknown_owner_is_non_owner(self):
        assert resolve_role("B1", None) is Role.NON_OWNER


class TestVisibilityFilter:
    """Tests for VisibilityFilter."""

    def test_buyer_sees_only_own_exchange(self):
        """Test a buyer never sees the owner's exchange with another buyer."""
        view = VisibilityFilter("B1", "S", Role.NON_OWNER)
        assert [m.id for m in view.apply(property_messages())] == ["1", "2"]

    def test_owner_sees_everything(self):
        view = VisibilityFilter("S", "S", Role.OWNER)
        assert [m.id for m in view.apply(property_messages())] == ["1", "2", "3"]

    def test_tombstones_hidden(self):
        """Test deleted messages are filtered for every role."""
        messages = property_messages() + [make_message("4", 4, deleted=True)]
        assert "4" not in [m.id for m in VisibilityFilter("S", "S", Role.OWNER).apply(messages)]
        assert "4" not in [m.id for m in VisibilityFilter("B1", "S", Role.NON_OWNER).apply(messages)]

    def test_views_share_input(self):
        """Test two views over one list leave it untouched."""
        messages = property_messages()
        VisibilityFilter("B1", "S", Role.NON_OWNER).apply(messages)
        VisibilityFilter("S", "S", Role.OWNER).apply(messages)
        assert len(messages) == 3
