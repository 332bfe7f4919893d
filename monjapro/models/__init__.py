from monjapro.models.billing import (  # noqa: F401
    PaymentRecord,
    ProviderPaymentStatus,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)
from monjapro.models.profile import Profile  # noqa: F401
from monjapro.models.webhook import WebhookEvent  # noqa: F401
