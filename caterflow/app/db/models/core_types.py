import enum

class Role(str, enum.Enum):
    admin = "admin"
    site_manager = "siteManager"
    stock_controller = "stockController"
    dispatch_staff = "dispatchStaff"
    auditor = "auditor"
    procurer = "procurer"

# rôles qui voient tous les sites
MULTI_SITE_ROLES = {Role.admin, Role.auditor, Role.procurer}
APPROVER_ROLES = {Role.admin, Role.auditor, Role.site_manager}
PO_APPROVER_ROLES = {Role.admin, Role.site_manager, Role.procurer}

class BinType(str, enum.Enum):
    main_storage = "main-storage"
    overflow_storage = "overflow-storage"
    refrigerator = "refrigerator"
    freezer = "freezer"
    dispensing_point = "dispensing-point"
    receiving_area = "receiving-area"

class ItemType(str, enum.Enum):
    food = "food"
    non_food = "nonFood"

class UnitOfMeasure(str, enum.Enum):
    kg = "kg"
    g = "g"
    l = "l"
    ml = "ml"
    each = "each"
    box = "box"
    case = "case"
    bag = "bag"

class POStatus(str, enum.Enum):
    draft = "draft"
    pending_approval = "pending-approval"
    approved = "approved"
    partially_received = "partially-received"
    received = "received"
    cancelled = "cancelled"

class ReceiptStatus(str, enum.Enum):
    draft = "draft"
    completed = "completed"
    cancelled = "cancelled"

class ReceivedCondition(str, enum.Enum):
    good = "good"
    damaged = "damaged"
    short_shipped = "short-shipped"
    over_shipped = "over-shipped"

class ApprovalStatus(str, enum.Enum):
    """Transfers and adjustments."""
    draft = "draft"
    pending_approval = "pending-approval"
    approved = "approved"
    rejected = "rejected"
    completed = "completed"
    cancelled = "cancelled"

class AdjustmentType(str, enum.Enum):
    correction = "correction"
    loss = "loss"
    wastage = "wastage"
    expiry = "expiry"
    damage = "damage"
    theft = "theft"
    found = "found"
    donation = "donation"
    sample = "sample"

class CountStatus(str, enum.Enum):
    in_progress = "in-progress"
    completed = "completed"

class LedgerSource(str, enum.Enum):
    receipt = "GoodsReceipt"
    dispatch = "DispatchLog"
    transfer = "InternalTransfer"
    adjustment = "StockAdjustment"
