"""Shared schemas for the Inkwell generation and commerce services."""

from .enums import (
    BookType,
    JobStatus,
    JobType,
    OrderStatus,
    ProjectCounter,
    ProjectStatus,
    ShippingLevel,
)
from .models.jobs import Job, JobGroup, JobSpec
from .models.order import CheckoutResult, NewOrder, Order, PriceBreakdown, ShippingAddress
from .models.project import (
    REQUIRED_PAGE_PLAN_LENGTH,
    ChapterBeat,
    ChapterPlan,
    CharacterReference,
    PagePlanEntry,
    Project,
    StoryBible,
    StoryParameters,
    StoryPlan,
    Unit,
)
from .models.vendor import (
    CostQuote,
    CoverDimensions,
    PaymentSession,
    PrintJobLineItem,
    PrintJobRequest,
    PrintJobResult,
    ProductProfile,
    ShippingOption,
)
from .products import PRODUCT_PROFILES, get_product_profile

__all__ = [
    "BookType",
    "JobStatus",
    "JobType",
    "OrderStatus",
    "ProjectCounter",
    "ProjectStatus",
    "ShippingLevel",
    "Job",
    "JobGroup",
    "JobSpec",
    "CheckoutResult",
    "NewOrder",
    "Order",
    "PriceBreakdown",
    "ShippingAddress",
    "REQUIRED_PAGE_PLAN_LENGTH",
    "ChapterBeat",
    "ChapterPlan",
    "CharacterReference",
    "PagePlanEntry",
    "Project",
    "StoryBible",
    "StoryParameters",
    "StoryPlan",
    "Unit",
    "CostQuote",
    "CoverDimensions",
    "PaymentSession",
    "PrintJobLineItem",
    "PrintJobRequest",
    "PrintJobResult",
    "ProductProfile",
    "ShippingOption",
    "PRODUCT_PROFILES",
    "get_product_profile",
]
