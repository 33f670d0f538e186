from smb_erp.models.user import Permission, Role, RolePermission, User
from smb_erp.models.company import CompanyInfo, NotificationSettings, SecuritySettings
from smb_erp.models.audit_log import AuditLog
from smb_erp.models.contact import Contact
from smb_erp.models.accounting import Account, FiscalYear, JournalEntry
from smb_erp.models.inventory import InventoryItem, StockAdjustment
from smb_erp.models.order import PurchaseOrder, PurchaseOrderItem, SaleOrder, SaleOrderItem
from smb_erp.models.expense import Expense
from smb_erp.models.payment import Payment
