"""Who can see which daily engagement feature.

The rules run in a fixed order and the first one that returns a verdict wins:

1. ``signed_in``        – anonymous viewers or viewers without a role see nothing.
2. ``default_open``     – a feature with no settings row is visible.
3. ``kill_switch``      – a disabled feature is hidden from everyone, admins included.
4. ``privileged_bypass`` – admins and owners see every enabled feature.
5. ``role_allowed``     – everyone else needs their role in ``visible_to_roles``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

ROLES = ("bestie", "caregiver", "supporter", "vendor", "admin", "owner")
PRIVILEGED_ROLES = frozenset({"admin", "owner"})


@dataclass(frozen=True)
class Viewer:
    """Identity handed to the daily bar by the auth layer."""

    user_id: Optional[str] = None
    role: Optional[str] = None
    is_authenticated: bool = False
    auth_loading: bool = False

    @property
    def is_signed_in(self) -> bool:
        return bool(self.is_authenticated and self.user_id)

    @classmethod
    def anonymous(cls, auth_loading: bool = False) -> "Viewer":
        return cls(auth_loading=auth_loading)


@dataclass(frozen=True)
class FeatureSetting:
    feature_key: str
    is_enabled: bool = True
    visible_to_roles: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "FeatureSetting":
        roles = row.get("visible_to_roles") or ()
        return cls(
            feature_key=str(row.get("feature_key") or ""),
            is_enabled=bool(row.get("is_enabled")),
            visible_to_roles=tuple(str(role) for role in roles),
        )

    def to_dict(self) -> dict:
        return {
            "feature_key": self.feature_key,
            "is_enabled": self.is_enabled,
            "visible_to_roles": list(self.visible_to_roles),
        }


# A rule returns True/False to decide, or None to defer to the next rule.
VisibilityRule = Callable[[Viewer, Optional[FeatureSetting]], Optional[bool]]


def _signed_in(viewer: Viewer, setting: Optional[FeatureSetting]) -> Optional[bool]:
    if not viewer.is_authenticated or not viewer.role:
        return False
    return None


def _default_open(viewer: Viewer, setting: Optional[FeatureSetting]) -> Optional[bool]:
    if setting is None:
        return True
    return None


def _kill_switch(viewer: Viewer, setting: Optional[FeatureSetting]) -> Optional[bool]:
    if setting is not None and not setting.is_enabled:
        return False
    return None


def _privileged_bypass(viewer: Viewer, setting: Optional[FeatureSetting]) -> Optional[bool]:
    if viewer.role in PRIVILEGED_ROLES:
        return True
    return None


def _role_allowed(viewer: Viewer, setting: Optional[FeatureSetting]) -> Optional[bool]:
    if setting is None:
        return None
    return viewer.role in setting.visible_to_roles


VISIBILITY_RULES: Tuple[Tuple[str, VisibilityRule], ...] = (
    ("signed_in", _signed_in),
    ("default_open", _default_open),
    ("kill_switch", _kill_switch),
    ("privileged_bypass", _privileged_bypass),
    ("role_allowed", _role_allowed),
)


class VisibilityPolicy:
    """Evaluate feature visibility against a snapshot of engagement settings."""

    def __init__(
        self,
        settings: Iterable[FeatureSetting] = (),
        rules: Tuple[Tuple[str, VisibilityRule], ...] = VISIBILITY_RULES,
    ) -> None:
        self._settings: Dict[str, FeatureSetting] = {}
        for setting in settings:
            # first row wins, like a find() over the fetched list
            self._settings.setdefault(setting.feature_key, setting)
        self._rules = rules

    def setting_for(self, feature_key: str) -> Optional[FeatureSetting]:
        return self._settings.get(feature_key)

    def decide(self, viewer: Viewer, feature_key: str) -> Tuple[bool, str]:
        """Return ``(visible, rule_name)`` for the first rule that decides."""
        setting = self.setting_for(feature_key)
        for name, rule in self._rules:
            verdict = rule(viewer, setting)
            if verdict is not None:
                return verdict, name
        return False, "no_rule"

    def can_see(self, viewer: Viewer, feature_key: str) -> bool:
        return self.decide(viewer, feature_key)[0]


def can_see_feature(
    viewer: Viewer,
    settings: Iterable[FeatureSetting],
    feature_key: str,
) -> bool:
    return VisibilityPolicy(settings).can_see(viewer, feature_key)
