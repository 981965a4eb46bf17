from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    price: int                      # whole rupees
    interval: Optional[str]         # "month" or None for one-time / free
    description: str
    features: List[str] = field(default_factory=list)
    popular: bool = False

    @property
    def amount_paise(self) -> int:
        return self.price * 100


PLANS = [
    Plan(
        id="free",
        name="Free",
        price=0,
        interval=None,
        description="Perfect for getting started with your digital legacy",
        features=[
            "Basic text chatbot",
            "Essential life story questions",
            "Simple memorial page",
            "Basic privacy settings",
            "Community support",
        ],
    ),
    Plan(
        id="premium",
        name="Premium",
        price=1299,
        interval="month",
        popular=True,
        description="Complete digital immortality experience",
        features=[
            "Everything in Free",
            "Voice cloning & playback",
            "Video & voice calls with AI",
            "3D holographic avatar",
            "Advanced AI personality",
            "Family guestbook",
            "Priority support",
            "Custom memorial themes",
            "Advanced privacy controls",
        ],
    ),
    Plan(
        id="lifetime",
        name="Lifetime",
        price=29999,
        interval=None,
        description="Secure your digital legacy forever",
        features=[
            "Everything in Premium",
            "Unlimited video/voice calls",
            "Permanent hosting guarantee",
            "Advanced customization",
            "Multiple avatar styles",
            "API access for developers",
            "White-glove setup service",
            "Family account management",
            "Legacy transfer options",
        ],
    ),
]

PLANS_BY_ID = {plan.id: plan for plan in PLANS}
VALID_PLAN_IDS = tuple(PLANS_BY_ID)


def get_plan(plan_id: str) -> Optional[Plan]:
    return PLANS_BY_ID.get(plan_id)


def format_price(price: int) -> str:
    """Format whole rupees with Indian digit grouping, e.g. 129999 -> ₹1,29,999."""
    digits = str(price)
    if len(digits) > 3:
        head, tail = digits[:-3], digits[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        digits = ",".join(groups + [tail])
    return f"₹{digits}"
