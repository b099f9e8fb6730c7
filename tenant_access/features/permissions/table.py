"""
Permission tables: feature -> set of granted actions.

A PermissionTable is the atomic grant unit attached to roles, groups and
users. Tables are immutable; merging returns a new table whose action set for
each feature is the union of the inputs, so merging is associative and
commutative. `manage` on a feature implies every other action on it.
"""
import enum
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional


class ActionKind(str, enum.Enum):
    """Closed set of actions that can be granted per feature."""
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    CONVERT = "convert"
    IMPORT = "import"
    EXPORT = "export"
    MANAGE = "manage"


ALL_ACTIONS: FrozenSet[ActionKind] = frozenset(ActionKind)


@dataclass(frozen=True)
class FeatureDefinition:
    """A named capability area and the actions that make sense on it."""
    name: str
    actions: FrozenSet[ActionKind]
    description: str


def _feature(name: str, actions: str, description: str) -> FeatureDefinition:
    return FeatureDefinition(
        name=name,
        actions=frozenset(ActionKind(a) for a in actions.split()),
        description=description,
    )


_CRUD = "create read update delete manage"

# Registry of known features, shared with callers
FEATURES: Dict[str, FeatureDefinition] = {
    f.name: f
    for f in (
        _feature("user_management", _CRUD, "Manage users, assign roles, control user access"),
        _feature("role_management", _CRUD, "Create and manage custom roles and permissions"),
        _feature("group_management", _CRUD, "Organize users into groups and assign group roles"),
        _feature(
            "lead_management",
            "create read update delete convert import export manage",
            "Manage leads, convert to accounts/contacts, bulk operations",
        ),
        _feature("account_management", "create read update delete export manage", "Manage customer accounts"),
        _feature("contact_management", "create read update delete export manage", "Manage contacts at accounts"),
        _feature("opportunity_management", _CRUD, "Manage sales opportunities"),
        _feature("activity_management", _CRUD, "Create and track tasks, calls, emails, and meetings"),
        _feature("task_management", _CRUD, "Manage tasks"),
        _feature("meeting_management", _CRUD, "Manage meetings"),
        _feature("call_management", _CRUD, "Manage calls"),
        _feature("note_management", _CRUD, "Manage notes"),
        _feature("report_management", "read create export manage", "View and create reports, export data"),
        _feature("data_center", "create read update delete import export manage", "Manage the customer database"),
        _feature("advanced_analytics", "read manage", "Advanced analytics dashboards"),
        _feature("api_access", "read manage", "Programmatic API access"),
    )
}


def coerce_action(action: Any) -> Optional[ActionKind]:
    """Return the ActionKind for action, or None when it is not a known action."""
    if isinstance(action, ActionKind):
        return action
    try:
        return ActionKind(str(action).strip().lower())
    except ValueError:
        return None


def validate_entry(feature: str, actions: Iterable[Any]) -> FrozenSet[ActionKind]:
    """
    Validate a (feature, actions) grant against the registry.

    Used at the API boundary; internal code tolerates unknown values instead.

    Raises:
        ValueError: unknown feature, unknown action, or an action the feature
            does not support
    """
    definition = FEATURES.get(feature)
    if definition is None:
        raise ValueError(f"Unknown feature '{feature}'")
    result = set()
    for action in actions:
        kind = coerce_action(action)
        if kind is None:
            raise ValueError(f"Unknown action '{action}'")
        if kind not in definition.actions:
            raise ValueError(f"Action '{kind.value}' is not available on feature '{feature}'")
        result.add(kind)
    return frozenset(result)


class PermissionTable:
    """
    Immutable mapping of feature -> frozenset[ActionKind].

    Features with no actions are dropped, so an empty action set and a
    missing entry mean the same thing: no permission.
    """
    __slots__ = ("_grants",)

    def __init__(self, grants: Optional[Mapping[str, Iterable[Any]]] = None):
        table: Dict[str, FrozenSet[ActionKind]] = {}
        for feature, actions in (grants or {}).items():
            kinds = frozenset(k for k in (coerce_action(a) for a in actions) if k is not None)
            if kinds:
                table[feature] = table.get(feature, frozenset()) | kinds
        self._grants = table

    @classmethod
    def from_entries(cls, entries: Optional[Iterable[Mapping[str, Any]]]) -> "PermissionTable":
        """
        Build a table from stored [{"feature": ..., "actions": [...]}] entries.

        Repeated features are unioned; malformed entries and unknown actions
        contribute nothing.
        """
        merged: Dict[str, set] = {}
        for entry in entries or ():
            if not isinstance(entry, Mapping):
                continue
            feature = entry.get("feature")
            if not isinstance(feature, str) or not feature:
                continue
            merged.setdefault(feature, set()).update(entry.get("actions") or ())
        return cls(merged)

    def to_entries(self) -> List[Dict[str, Any]]:
        """Serialize to the stored entry list, sorted for stable output."""
        return [
            {"feature": feature, "actions": sorted(a.value for a in actions)}
            for feature, actions in sorted(self._grants.items())
        ]

    @property
    def features(self) -> FrozenSet[str]:
        return frozenset(self._grants)

    def actions_for(self, feature: str) -> FrozenSet[ActionKind]:
        return self._grants.get(feature, frozenset())

    def grants(self, feature: str, action: Any) -> bool:
        kind = coerce_action(action)
        actions = self._grants.get(feature)
        if kind is None or not actions:
            return False
        return ActionKind.MANAGE in actions or kind in actions

    def merge(self, other: "PermissionTable") -> "PermissionTable":
        combined: Dict[str, FrozenSet[ActionKind]] = dict(self._grants)
        for feature, actions in other._grants.items():
            combined[feature] = combined.get(feature, frozenset()) | actions
        return PermissionTable(combined)

    def __or__(self, other: "PermissionTable") -> "PermissionTable":
        return self.merge(other)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PermissionTable):
            return NotImplemented
        return self._grants == other._grants

    def __hash__(self) -> int:
        return hash(frozenset(self._grants.items()))

    def __bool__(self) -> bool:
        return bool(self._grants)

    def __len__(self) -> int:
        return len(self._grants)

    def __repr__(self) -> str:
        body = ", ".join(f"{f}: {sorted(a.value for a in acts)}" for f, acts in sorted(self._grants.items()))
        return f"<PermissionTable({body})>"


EMPTY_TABLE = PermissionTable()


def merge(*tables: PermissionTable) -> PermissionTable:
    """Union any number of tables; order does not matter."""
    result = EMPTY_TABLE
    for table in tables:
        result = result.merge(table)
    return result


def grants(table: PermissionTable, feature: str, action: Any) -> bool:
    """True iff table grants action (or manage) on feature."""
    return table.grants(feature, action)
