"""Central model registry: import all models so metadata discovery works."""

from trading_api.database import Base  # noqa: F401

from trading_api.models.company import Company  # noqa: F401
from trading_api.models.supplier import Supplier  # noqa: F401
from trading_api.models.product import Product, Stock  # noqa: F401
from trading_api.models.purchase import (  # noqa: F401
    Purchase,
    PurchaseLine,
    PurchaseApprovalEvent,
    PurchaseFromParent,
    PurchaseFromParentLine,
)
from trading_api.models.expense import (  # noqa: F401
    ExpenseCategory,
    ExpenseCategorySupplier,
    PurchaseExpense,
)
from trading_api.models.cost import ProductCostHistory, ProductCostLog  # noqa: F401
from trading_api.models.payable import (  # noqa: F401
    SupplierPaymentReceipt,
    SupplierAccountEntry,
    PayablePosting,
)
from trading_api.models.sale import Sale, SaleLine, SaleReturn, SaleReturnLine  # noqa: F401
from trading_api.models.damage_report import DamageReport, DamageReportLine  # noqa: F401
from trading_api.models.audit_log import AuditLog  # noqa: F401
