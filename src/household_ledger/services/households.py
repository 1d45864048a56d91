from household_ledger.db.schema import Household, HouseholdMember
from household_ledger.domain.provider_categories import ProviderCategoryMap
from household_ledger.errors import AuthorizationError
from household_ledger.ledger.repository import Ledger
from household_ledger.ledger.transfers import TRANSFER_CATEGORY_NAME
from household_ledger.models import MemberRole

CONNECTION_ROLES = frozenset({MemberRole.OWNER, MemberRole.ADMIN})
EXTRA_DEFAULT_CATEGORIES = ("Groceries", "Other")


def default_category_names(category_map: ProviderCategoryMap) -> list[str]:
    names = category_map.target_names() + list(EXTRA_DEFAULT_CATEGORIES)
    return sorted(set(names)) + [TRANSFER_CATEGORY_NAME]


class HouseholdService:
    def __init__(self, ledger: Ledger, category_map: ProviderCategoryMap) -> None:
        self.ledger = ledger
        self.category_map = category_map

    def create(self, name: str, owner_user_id: str, *, auto_classify_imports: bool = False) -> Household:
        return self.ledger.create_household(
            name,
            owner_user_id,
            default_category_names(self.category_map),
            auto_classify_imports=auto_classify_imports,
        )

    def authorize(
        self,
        household_id: str,
        user_id: str | None,
        roles: frozenset[MemberRole] | None = None,
    ) -> MemberRole:
        """Raise unless ``user_id`` belongs to the household (with one of ``roles``)."""
        self.ledger.get_household(household_id)
        if not user_id:
            raise AuthorizationError("missing user identity")
        role = self.ledger.member_role(household_id, user_id)
        if role is None:
            raise AuthorizationError(f"user {user_id} is not a member of household {household_id}")
        if roles is not None and role not in roles:
            raise AuthorizationError(f"role {role.value} may not perform this action")
        return role

    def add_member(self, household_id: str, user_id: str, role: MemberRole = MemberRole.MEMBER) -> HouseholdMember:
        return self.ledger.add_member(household_id, user_id, role)
