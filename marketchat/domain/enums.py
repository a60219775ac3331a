from enum import Enum


class UserRole(str, Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    ADMIN = "admin"


class ClosedReason(str, Enum):
    ENDED_BY_USER = "ended_by_user"
    INACTIVE = "inactive"
    PRODUCT_UNAVAILABLE = "product_unavailable"


class ChatSurface(str, Enum):
    STOREFRONT = "storefront"
    DASHBOARD = "dashboard"


class ProductStatus(str, Enum):
    PUBLISH = "publish"
    DRAFT = "draft"
    ARCHIVED = "archived"
