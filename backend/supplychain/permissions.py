"""
Access rule tables.

WHY: Every authorization decision in the workflow is a lookup in the
tables below plus a comparison, so the rules can be audited in one place.
services.access_service evaluates them; nothing here touches the database.

ROLE LEVELS: lower number = more privilege.
    1  super admin (only tier allowed to delete orders)
    10 HQ admin
    20 power user (approval threshold)
    30 manager
    40 user
    50 guest
"""


class RoleLevel:
    SUPER_ADMIN = 1
    HQ_ADMIN = 10
    POWER_USER = 20
    MANAGER = 30
    USER = 40
    GUEST = 50


class Action:
    CREATE_ORDER = "create_order"
    EDIT_ORDER = "edit_order"
    SUBMIT_ORDER = "submit_order"
    APPROVE_ORDER = "approve_order"
    DELETE_ORDER = "delete_order"
    ALLOCATE_ORDER = "allocate_order"
    ACKNOWLEDGE_DOCUMENT = "acknowledge_document"
    ATTACH_PAYMENT_PROOF = "attach_payment_proof"
    MANAGE_STOCK = "manage_stock"
    LARGE_ADJUSTMENT = "large_adjustment"
    CREATE_TRANSFER = "create_transfer"
    RECEIVE_TRANSFER = "receive_transfer"
    MANAGE_HIERARCHY = "manage_hierarchy"


class ReasonCode:
    OK = "OK"
    INACTIVE_ACTOR = "INACTIVE_ACTOR"
    UNKNOWN_ACTION = "UNKNOWN_ACTION"
    ROLE_TOO_LOW = "ROLE_TOO_LOW"
    NOT_RECEIVING_ORG = "NOT_RECEIVING_ORG"
    NOT_APPROVING_ORG = "NOT_APPROVING_ORG"
    NOT_SUPER_ADMIN = "NOT_SUPER_ADMIN"
    NOT_BUYER_ORG = "NOT_BUYER_ORG"
    NOT_SELLER_ORG = "NOT_SELLER_ORG"
    NOT_CREATOR_OR_PRIVILEGED = "NOT_CREATOR_OR_PRIVILEGED"
    NOT_LOCATION_ORG = "NOT_LOCATION_ORG"
    NOT_DESTINATION_ORG = "NOT_DESTINATION_ORG"
    NOT_SAME_COMPANY = "NOT_SAME_COMPANY"


# Human-readable messages surfaced through PermissionDenied
REASON_MESSAGES = {
    ReasonCode.OK: "Allowed",
    ReasonCode.INACTIVE_ACTOR: "Your account is inactive",
    ReasonCode.UNKNOWN_ACTION: "Unknown action",
    ReasonCode.ROLE_TOO_LOW: "Your role does not allow this action",
    ReasonCode.NOT_RECEIVING_ORG: "Only the receiving organization can acknowledge this document",
    ReasonCode.NOT_APPROVING_ORG: "Your organization cannot approve this order",
    ReasonCode.NOT_SUPER_ADMIN: "Only a super admin can do this",
    ReasonCode.NOT_BUYER_ORG: "Only the buying organization can do this",
    ReasonCode.NOT_SELLER_ORG: "Only the selling organization can do this",
    ReasonCode.NOT_CREATOR_OR_PRIVILEGED: "Only the order creator or a manager of the buying organization can submit",
    ReasonCode.NOT_LOCATION_ORG: "You cannot manage stock at this location",
    ReasonCode.NOT_DESTINATION_ORG: "Only the destination organization can confirm receipt",
    ReasonCode.NOT_SAME_COMPANY: "This belongs to another company",
}


# Which party of an order must act on each document type
ACKNOWLEDGING_PARTY = {
    "PO": "seller",
    "INVOICE": "buyer",
    "PAYMENT": "seller",
    "RECEIPT": "buyer",
}

# Who approves an order of each type: the company HQ, or the seller itself
APPROVING_PARTY = {
    "H2M": "company",
    "D2H": "company",
    "S2D": "seller",
}

DEFAULT_ACK_ROLE_THRESHOLDS = {
    "PO": RoleLevel.USER,
    "INVOICE": RoleLevel.MANAGER,
    "PAYMENT": RoleLevel.MANAGER,
    "RECEIPT": RoleLevel.USER,
}
