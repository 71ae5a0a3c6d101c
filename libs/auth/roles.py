"""Canonical role helpers.

All role checks go through these predicates instead of comparing enum
literals at call sites.
"""

import enum


class UserRole(str, enum.Enum):
    CUSTOMER = "CUSTOMER"
    SELLER_PENDING = "SELLER_PENDING"
    SELLER_ACTIVE = "SELLER_ACTIVE"
    ADMIN = "ADMIN"


def is_seller(role: UserRole) -> bool:
    """Any seller role, approved or not. ADMIN is not a seller."""
    return role in (UserRole.SELLER_PENDING, UserRole.SELLER_ACTIVE)


def is_admin(role: UserRole) -> bool:
    return role == UserRole.ADMIN


def can_access_seller_features(role: UserRole) -> bool:
    """Seller dashboards and inventory: both seller roles plus admin."""
    return is_seller(role) or is_admin(role)


def can_create_orders(role: UserRole) -> bool:
    """Only plain customers place orders; seller-capable accounts may not."""
    return not can_access_seller_features(role)
