"""
Label schema shared by every cooperating instance.

These keys and values are the wire-visible contract of the election
protocol: all replicas in a cluster must agree on them for the
single-master invariant to hold.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple

ROLE_LABEL = "role"
APP_LABEL = "app"
PARENT_LABEL = "parent"
JOB_NAME_LABEL = "job-name"  # assigned by the job runtime

RESERVED_LABELS = frozenset({ROLE_LABEL, APP_LABEL, PARENT_LABEL, JOB_NAME_LABEL})


class Role(str, Enum):
    """Election role carried in the role label."""
    
    MASTER = "master"
    SLAVE = "slave"
    
    def label(self) -> Tuple[str, str]:
        """Return the (key, value) pair for this role."""
        return ROLE_LABEL, self.value


@dataclass
class JobLabels:
    """
    Labels attached to a batch job.
    
    The reserved keys always win over caller-supplied extras.
    
    Attributes:
        app: Job name, stored under the app label
        parent: Owner instance name
        extra: Caller-supplied labels
    """
    app: str
    parent: str
    extra: Dict[str, str] = field(default_factory=dict)
    
    def to_dict(self) -> Dict[str, str]:
        """Render as a flat label mapping."""
        labels = dict(self.extra)
        labels[PARENT_LABEL] = self.parent
        labels[APP_LABEL] = self.app
        return labels


def role_of(labels: Mapping[str, str]) -> Optional[Role]:
    """
    Read the role assignment from a label mapping.
    
    Args:
        labels: Object labels
    
    Returns:
        Role, or None if unlabeled or carrying an unknown value
    """
    try:
        return Role(labels.get(ROLE_LABEL))
    except ValueError:
        return None


def selector_from_set(labels: Mapping[str, str]) -> str:
    """
    Render an equality-based label selector.
    
    Keys are sorted so the same set always yields the same selector.
    
    Args:
        labels: Required key/value pairs
    
    Returns:
        Selector string such as "app=web,role=master"
    """
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))
