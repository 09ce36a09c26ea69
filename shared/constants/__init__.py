from shared.constants.roles import ApprovalStatus, Role

__all__ = ["ApprovalStatus", "Role"]
