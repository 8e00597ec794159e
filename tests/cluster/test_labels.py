"""Tests for the label schema."""

from lector.cluster.labels import (
    APP_LABEL,
    PARENT_LABEL,
    ROLE_LABEL,
    JobLabels,
    Role,
    role_of,
    selector_from_set,
)


class TestRole:
    """Test role labels."""
    
    def test_label_pairs(self):
        """Test roles render as role label pairs."""
        assert Role.MASTER.label() == ("role", "master")
        assert Role.SLAVE.label() == ("role", "slave")
    
    def test_role_of(self):
        """Test reading the role from labels."""
        assert role_of({ROLE_LABEL: "master"}) is Role.MASTER
        assert role_of({ROLE_LABEL: "slave"}) is Role.SLAVE
        assert role_of({}) is None
        assert role_of({ROLE_LABEL: "observer"}) is None


class TestJobLabels:
    """Test job label rendering."""
    
    def test_reserved_keys_win(self):
        """Test app and parent override caller extras."""
        labels = JobLabels(
            app="report",
            parent="web-0",
            extra={APP_LABEL: "x", PARENT_LABEL: "y", "team": "data"},
        ).to_dict()
        
        assert labels == {"app": "report", "parent": "web-0", "team": "data"}


class TestSelector:
    """Test selector rendering."""
    
    def test_sorted(self):
        """Test selectors are sorted by key."""
        assert selector_from_set({"role": "master", "app": "web"}) == "app=web,role=master"
    
    def test_empty(self):
        assert selector_from_set({}) == ""
