"""SQLAlchemy models package."""

from .entitlement_config import EntitlementConfig  # noqa: F401
from .member import (  # noqa: F401
    FeeRecordStatus,
    FeeRenewalType,
    Member,
    MemberStatus,
    MembershipFeeRecord,
)
from .points_ledger import LedgerDirection, LedgerSource, PointsLedgerEntry  # noqa: F401
from .redemption import (  # noqa: F401
    RedemptionItem,
    RedemptionItemStatus,
    RedemptionOrigin,
    RedemptionRecord,
)
from .visit_session import VisitSession, VisitSessionStatus  # noqa: F401
