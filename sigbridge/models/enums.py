"""
Enumeration types used across the connector.

Values match what is stored in the database and what the remote
mail management surface expects.
"""

from enum import Enum


class RuleScope(str, Enum):
    """Sender / recipient scope of a transport rule"""
    IN_ORGANIZATION = "InOrganization"
    NOT_IN_ORGANIZATION = "NotInOrganization"
    IN_ORGANIZATION_OR_PARTNER = "InOrganizationOrPartner"


class DisclaimerLocation(str, Enum):
    """Where the disclaimer is placed in the message body"""
    APPEND = "Append"
    PREPEND = "Prepend"


class FallbackAction(str, Enum):
    """What the mail system does when the disclaimer cannot be inserted"""
    WRAP = "Wrap"
    IGNORE = "Ignore"
    REJECT = "Reject"


class DeploymentStatus(str, Enum):
    """Lifecycle of a locally tracked transport rule"""
    DEPLOYED = "deployed"
    PENDING_MANUAL_EXECUTION = "pending_manual_execution"
    PENDING_DELETION = "pending_deletion"
    DELETED = "deleted"


class LogStatus(str, Enum):
    """Outcome recorded in a deployment log entry"""
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"


class ScriptOperation(str, Enum):
    """Mutation performed by a generated administrative script"""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ScriptStatus(str, Enum):
    """Status of a generated script (execution happens outside the system)"""
    PENDING_EXECUTION = "pending_execution"


class TokenScope(str, Enum):
    """Logical token scopes; mapped to provider scopes through settings"""
    DIRECTORY = "directory"
    MAIL_MANAGEMENT = "mail_management"


class DeploymentPhase(str, Enum):
    """States of a single deployment attempt"""
    PENDING = "pending"
    AUTHENTICATING = "authenticating"
    RECONCILING = "reconciling"
    DEPLOYED = "deployed"
    UNSUPPORTED = "unsupported"
    SCRIPT_GENERATED = "script_generated"
    FAILED = "failed"


class MessageType(str, Enum):
    """Message types a transport rule can match on"""
    OOF = "OOF"
    AUTO_FORWARD = "AutoForward"
    ENCRYPTED = "Encrypted"
    CALENDARING = "Calendaring"
    PERMISSION_CONTROLLED = "PermissionControlled"
    VOICEMAIL = "Voicemail"
    SIGNED = "Signed"
    APPROVAL_REQUEST = "ApprovalRequest"
    READ_RECEIPT = "ReadReceipt"
