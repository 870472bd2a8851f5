"""Scope planning: which stats to request, for whom, and which to seed.

Splits enabled stats into a public scope (all active characters) and one
private scope per owner, classifies each custom stat/character pair as
existing (request a delta) or first-run (seed only), and resolves the
previous value of custom stats including legacy per-character values of
stats that are now global.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from relstats.core.config import ExtractionSettings
from relstats.core.constants import GLOBAL_TRACKER_KEY, USER_TRACKER_KEY
from relstats.models.schemas import CustomStatDefinition, ScopeResolutionEntry, StatKey


logger = logging.getLogger(__name__)

RawCustomMap = Mapping[str, Mapping[str, Any]]


@dataclass
class CustomStatPlan:
    """One custom stat within one scope."""

    definition: CustomStatDefinition
    characters: list[str]
    existing: list[str] = field(default_factory=list)
    first_run: list[str] = field(default_factory=list)

    @property
    def stat_id(self) -> str:
        return self.definition.id

    @property
    def needs_request(self) -> bool:
        return bool(self.existing)

    @property
    def request_characters(self) -> list[str]:
        # A global stat has one shared value: any scope character may report it
        if self.definition.global_scope:
            return list(self.characters)
        return list(self.existing)


@dataclass
class RequestBatch:
    """The subject matter of one generation request."""

    characters: list[str]
    stats: list[StatKey] = field(default_factory=list)
    custom_plans: list[CustomStatPlan] = field(default_factory=list)
    owner: Optional[str] = None
    unified_all: bool = False

    @property
    def custom_stats(self) -> list[CustomStatDefinition]:
        return [plan.definition for plan in self.custom_plans]

    @property
    def stat_list(self) -> list[str]:
        return [stat.value for stat in self.stats] + [plan.stat_id for plan in self.custom_plans]

    @property
    def is_private(self) -> bool:
        return self.owner is not None

    @property
    def carries_mood(self) -> bool:
        return StatKey.MOOD in self.stats

    @property
    def label(self) -> str:
        if self.unified_all:
            name = "stats"
        elif len(self.stat_list) == 1:
            name = self.stat_list[0]
        else:
            name = "stats"
        if self.owner is not None:
            return f"{name} ({self.owner})"
        return name


@dataclass
class ScopePlan:
    """Full request/seed plan for one extraction run."""

    active_characters: list[str]
    public_stats: list[StatKey]
    private_stats: list[StatKey]
    public_custom: list[CustomStatPlan]
    private_custom: dict[str, list[CustomStatPlan]]
    scope_resolution: dict[str, dict[str, ScopeResolutionEntry]] = field(default_factory=dict)

    def all_custom_plans(self) -> list[CustomStatPlan]:
        plans = list(self.public_custom)
        for owner in self.active_characters:
            plans.extend(self.private_custom.get(owner, []))
        return plans

    def unified_batches(self) -> tuple[list[RequestBatch], list[RequestBatch]]:
        """Return (public, private) batches for unified mode."""
        public: list[RequestBatch] = []
        custom = [plan for plan in self.public_custom if plan.needs_request]
        if self.public_stats or custom:
            public.append(
                RequestBatch(
                    characters=list(self.active_characters),
                    stats=list(self.public_stats),
                    custom_plans=custom,
                    unified_all=True,
                )
            )

        private: list[RequestBatch] = []
        for owner in self.active_characters:
            owner_custom = [plan for plan in self.private_custom.get(owner, []) if plan.needs_request]
            if not self.private_stats and not owner_custom:
                continue
            private.append(
                RequestBatch(
                    characters=[owner],
                    stats=list(self.private_stats),
                    custom_plans=owner_custom,
                    owner=owner,
                    unified_all=True,
                )
            )
        return public, private

    def sequential_batches(self) -> tuple[list[RequestBatch], list[RequestBatch], list[RequestBatch], list[RequestBatch]]:
        """Return (public built-in, public custom, private built-in, private custom) batches."""
        public_builtin = [
            RequestBatch(characters=list(self.active_characters), stats=[stat])
            for stat in self.public_stats
        ]
        public_custom = [
            RequestBatch(characters=plan.request_characters, custom_plans=[plan])
            for plan in self.public_custom
            if plan.needs_request
        ]
        private_builtin: list[RequestBatch] = []
        private_custom: list[RequestBatch] = []
        for owner in self.active_characters:
            for stat in self.private_stats:
                private_builtin.append(RequestBatch(characters=[owner], stats=[stat], owner=owner))
            for plan in self.private_custom.get(owner, []):
                if plan.needs_request:
                    private_custom.append(
                        RequestBatch(characters=[owner], custom_plans=[plan], owner=owner)
                    )
        return public_builtin, public_custom, private_builtin, private_custom


def _has_value(stat_values: Mapping[str, Any], key: str) -> bool:
    return stat_values.get(key) is not None


def resolve_previous_custom_value(
    definition: CustomStatDefinition,
    owner: str,
    stat_values: Optional[Mapping[str, Any]],
    active_characters: list[str],
) -> ScopeResolutionEntry:
    """Find the previous value of a custom stat for one owner.

    Per-character stats read the owner's key. Global stats read the global
    key, then fall back to the first active character holding a legacy
    value, then to any legacy value.
    """
    stat_values = stat_values or {}
    if not definition.global_scope:
        if _has_value(stat_values, owner):
            return ScopeResolutionEntry(global_scope=False, resolved_from="owner", value=stat_values[owner])
        return ScopeResolutionEntry(global_scope=False, resolved_from="none")

    if _has_value(stat_values, GLOBAL_TRACKER_KEY):
        return ScopeResolutionEntry(
            global_scope=True,
            resolved_from="global",
            value=stat_values[GLOBAL_TRACKER_KEY],
        )
    for name in active_characters:
        if _has_value(stat_values, name):
            return ScopeResolutionEntry(
                global_scope=True,
                resolved_from="legacy_fallback",
                value=stat_values[name],
                legacy_fallback_owner=name,
            )
    for name, value in stat_values.items():
        if value is not None:
            return ScopeResolutionEntry(
                global_scope=True,
                resolved_from="legacy_fallback",
                value=value,
                legacy_fallback_owner=name,
            )
    return ScopeResolutionEntry(global_scope=True, resolved_from="none")


class ScopePlanner:
    """Builds a ScopePlan from settings and the raw previous custom maps."""

    def __init__(self, settings: ExtractionSettings):
        self._settings = settings

    def plan(
        self,
        active_characters: list[str],
        raw_custom: Optional[RawCustomMap] = None,
        raw_custom_non_numeric: Optional[RawCustomMap] = None,
        has_prior_tracker_data: bool = False,
        previous_custom: Optional[RawCustomMap] = None,
        previous_custom_non_numeric: Optional[RawCustomMap] = None,
    ) -> ScopePlan:
        """Plan requests and seeds for one run.

        Args:
            active_characters: Characters in scope, in request order.
            raw_custom: Stored numeric custom map, legacy keys included.
            raw_custom_non_numeric: Stored non-numeric custom map.
            has_prior_tracker_data: Whether any earlier tracker state exists.
            previous_custom: Numeric custom map to merge against
                (defaults to ``raw_custom``).
            previous_custom_non_numeric: Non-numeric custom map to merge
                against (defaults to ``raw_custom_non_numeric``).

        Returns:
            ScopePlan
        """
        settings = self._settings
        characters = list(active_characters)
        user_only = characters == [USER_TRACKER_KEY]

        enabled = settings.enabled_stats()
        private_stats = [
            stat for stat in enabled
            if stat == StatKey.LAST_THOUGHT and settings.last_thought_private
        ]
        public_stats = [stat for stat in enabled if stat not in private_stats]

        public_custom: list[CustomStatPlan] = []
        private_custom: dict[str, list[CustomStatPlan]] = {}
        scope_resolution: dict[str, dict[str, ScopeResolutionEntry]] = {}

        for definition in settings.enabled_custom_stats():
            raw_map = raw_custom if definition.is_numeric else raw_custom_non_numeric
            merge_map = previous_custom if definition.is_numeric else previous_custom_non_numeric
            raw_values = (raw_map or {}).get(definition.id) or {}
            merge_values = (merge_map or {}).get(definition.id)
            if merge_values is None:
                merge_values = raw_values

            resolutions = scope_resolution.setdefault(definition.id, {})
            if definition.global_scope:
                resolutions[GLOBAL_TRACKER_KEY] = resolve_previous_custom_value(
                    definition, GLOBAL_TRACKER_KEY, merge_values, characters
                )
            else:
                for name in characters:
                    resolutions[name] = resolve_previous_custom_value(
                        definition, name, merge_values, characters
                    )

            if definition.private_to_owner and not definition.global_scope:
                for owner in characters:
                    plan = self._classify(definition, [owner], raw_values, has_prior_tracker_data, user_only)
                    private_custom.setdefault(owner, []).append(plan)
            else:
                plan = self._classify(definition, characters, raw_values, has_prior_tracker_data, user_only)
                public_custom.append(plan)

        plan = ScopePlan(
            active_characters=characters,
            public_stats=public_stats,
            private_stats=private_stats,
            public_custom=public_custom,
            private_custom=private_custom,
            scope_resolution=scope_resolution,
        )
        logger.debug(
            f"Scope plan: public={[s.value for s in public_stats]}, "
            f"private={[s.value for s in private_stats]}, "
            f"custom={[p.stat_id for p in plan.all_custom_plans()]}, user_only={user_only}"
        )
        return plan

    @staticmethod
    def _classify(
        definition: CustomStatDefinition,
        characters: list[str],
        raw_values: Mapping[str, Any],
        has_prior_tracker_data: bool,
        user_only: bool,
    ) -> CustomStatPlan:
        if user_only:
            existing = list(characters)
        elif definition.global_scope:
            baseline = has_prior_tracker_data and any(v is not None for v in raw_values.values())
            existing = list(characters) if baseline else []
        else:
            existing = [
                name for name in characters
                if has_prior_tracker_data and _has_value(raw_values, name)
            ]
        first_run = [name for name in characters if name not in existing]
        return CustomStatPlan(
            definition=definition,
            characters=list(characters),
            existing=existing,
            first_run=first_run,
        )
