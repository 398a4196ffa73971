"""ORM models package export."""

from storefront.models.customer import Customer
from storefront.models.customer_credit import (
    CreditBonusRule,
    CustomerCredit,
    CustomerCreditLedger,
    CustomerCreditLedgerType,
)
from storefront.models.facility import (
    ServiceStaff,
    ServiceStaffFacilitySchedule,
    StoreFacility,
)
from storefront.models.ledger import StoreLedger, StoreLedgerType
from storefront.models.order import OrderStatus, OrderType, PaymentStatus, StoreOrder
from storefront.models.payment_method import PaymentMethod
from storefront.models.reservation import (
    TERMINAL_STATUSES,
    Reservation,
    RsvpStatus,
)
from storefront.models.store import RsvpBlacklist, RsvpSettings, Store, StoreLevel

__all__ = [
    "CreditBonusRule",
    "Customer",
    "CustomerCredit",
    "CustomerCreditLedger",
    "CustomerCreditLedgerType",
    "OrderStatus",
    "OrderType",
    "PaymentMethod",
    "PaymentStatus",
    "Reservation",
    "RsvpBlacklist",
    "RsvpSettings",
    "RsvpStatus",
    "ServiceStaff",
    "ServiceStaffFacilitySchedule",
    "Store",
    "StoreFacility",
    "StoreLedger",
    "StoreLedgerType",
    "StoreLevel",
    "StoreOrder",
    "TERMINAL_STATUSES",
]
