from typing import Optional

from pydantic import EmailStr

from cursia.core.plans import UserPlan
from cursia.schemas.base_schema import CamelModel


class SubscriptionCreate(CamelModel):
    plan: UserPlan
    payment_source_id: str
    customer_email: Optional[EmailStr] = None
