"""Membership entitlement and billing engine."""

from .billing import FeeDeduction, MembershipBillingCycle  # noqa: F401
from .config import EntitlementConfigService  # noqa: F401
from .enrollment import DuplicateMemberError, Enrollment, MemberEnrollmentService  # noqa: F401
from .errors import (  # noqa: F401
    ConcurrentUpdateError,
    DeadlineExceededError,
    InvalidDurationError,
    InvalidLedgerAmountError,
    InvalidQuantityError,
    MembershipLogicError,
    OperationResult,
    RejectionReason,
    StoreUnavailableError,
    TransientStoreError,
)
from .ledger import LedgerAudit, LedgerPage, PointsLedger  # noqa: F401
from .periods import MembershipPeriod, calculate_visit_duration, resolve_membership_period  # noqa: F401
from .redemptions import (  # noqa: F401
    EffectiveLimits,
    MirrorCheck,
    RedemptionEligibility,
    RedemptionEntitlementEngine,
    RedemptionUsage,
    compute_effective_limits,
)
from .visits import VisitSessionTracker, visit_charge  # noqa: F401
