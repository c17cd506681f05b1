"""ORM models package -- re-exports all models and the Base class."""

from codemarket.models.base import Base
from codemarket.models.user import User
from codemarket.models.credit import (
    CreditConfig,
    CreditTransaction,
    UserCredits,
)
from codemarket.models.marketplace import (
    Order,
    OrderDownload,
    Project,
)
from codemarket.models.role_upgrade import RoleUpgradeRequest

__all__ = [
    "Base",
    "User",
    "UserCredits",
    "CreditTransaction",
    "CreditConfig",
    "Project",
    "Order",
    "OrderDownload",
    "RoleUpgradeRequest",
]
