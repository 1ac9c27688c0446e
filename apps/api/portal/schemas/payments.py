"""Plugin payment proxy schemas.

Fields are optional at the schema level: the proxy reports the first missing
field with the exact message the plugin expects, in a fixed order.
"""

from pydantic import BaseModel, ConfigDict


class CreatePaymentRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    order_id: int | str | None = None
    amount: int | None = None  # cents
    currency: str | None = None
    customer_email: str | None = None
    customer_name: str | None = None
    payment_method_id: str | None = None
    payment_type: str = "full"  # full | deposit
    site_url: str | None = None
    stripe_account_id: str | None = None
    idempotency_key: str | None = None


class ConfirmPaymentRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payment_intent_id: str | None = None
    payment_method_id: str | None = None
    stripe_account_id: str | None = None
    return_url: str | None = None


class VerifyPaymentRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payment_intent_id: str | None = None
    stripe_account_id: str | None = None


class FeeInfo(BaseModel):
    percentage: int
    amount: int
    plan_type: str


class CreatePaymentResponse(BaseModel):
    success: bool = True
    client_secret: str | None
    payment_intent_id: str
    customer_id: str
    payment_method_id: str
    status: str = "requires_confirmation"
    fee: FeeInfo


class PaymentStatusResponse(BaseModel):
    success: bool = True
    status: str
    next_action_redirect_url: str | None = None
