# Models package — import all models here so Alembic can discover them.

from habituals.models.entitlement import RcUserMap, UserEntitlement  # noqa: F401
from habituals.models.wallet import UserWallet  # noqa: F401
from habituals.models.purchase import AuditPurchase, PurchaseClaim  # noqa: F401
from habituals.models.function_metric import FunctionMetric  # noqa: F401
