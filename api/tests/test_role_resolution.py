from bazaar.core.auth import Principal, PrincipalType
from bazaar.core.security import ADMIN_SCOPES, BUYER_SCOPES, FARMER_SCOPES, _resolve_human_role


def test_app_metadata_role_wins() -> None:
    assert _resolve_human_role({"app_metadata": {"role": "admin"}, "user_metadata": {"role": "farmer"}}) == "admin"


def test_app_metadata_roles_list_prefers_highest() -> None:
    assert _resolve_human_role({"app_metadata": {"roles": ["buyer", "farmer"]}}) == "farmer"
    assert _resolve_human_role({"app_metadata": {"roles": ["farmer", "admin"]}}) == "admin"


def test_user_metadata_cannot_grant_admin() -> None:
    assert _resolve_human_role({"user_metadata": {"role": "admin"}}) == "buyer"
    assert _resolve_human_role({"user_metadata": {"role": "farmer"}}) == "farmer"


def test_unknown_role_defaults_to_buyer() -> None:
    assert _resolve_human_role({"app_metadata": {"role": "moderator"}}) == "buyer"
    assert _resolve_human_role({}) == "buyer"


def test_role_scopes_nest() -> None:
    assert BUYER_SCOPES < FARMER_SCOPES < ADMIN_SCOPES
    assert "listings:write" not in BUYER_SCOPES
    assert "moderation:write" in ADMIN_SCOPES


def test_principal_ownership_and_admin_flag() -> None:
    farmer = Principal(PrincipalType.HUMAN, "farmer-1", set(FARMER_SCOPES), role="farmer", actor_id="farmer-1")
    admin = Principal(PrincipalType.HUMAN, "admin-1", set(ADMIN_SCOPES), role="admin", actor_id="admin-1")

    assert farmer.owns({"farmer_id": "farmer-1"})
    assert not farmer.owns({"farmer_id": "farmer-2"})
    assert not farmer.is_admin
    assert admin.is_admin
