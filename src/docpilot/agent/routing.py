"""Tier resolution: which model, turn cap and tool set a task runs with."""

from __future__ import annotations

from dataclasses import dataclass

from docpilot.agent.models import TaskKind, Tier
from docpilot.config import AgentSettings, TierSettings


@dataclass(frozen=True, slots=True)
class TierProfile:
    """Resolved immutable invocation profile for one task."""

    tier: Tier
    model: str
    max_turns: int | None
    allowed_tools: tuple[str, ...] | None

    def cli_args(self) -> list[str]:
        """Flags appended to the agent command line for this profile."""

        args: list[str] = []
        if self.max_turns is not None:
            args.extend(["--max-turns", str(self.max_turns)])
        if self.allowed_tools:
            args.extend(["--allowedTools", ",".join(self.allowed_tools)])
        return args


@dataclass(slots=True)
class TierRouting:
    """Settings snapshot used to resolve a tier hint at dispatch time."""

    default_tier: Tier
    tiers: dict[Tier, TierSettings]
    allowed_tools: tuple[str, ...]

    @classmethod
    def from_settings(cls, settings: AgentSettings) -> TierRouting:
        """Build validated routing from agent settings."""

        return cls(
            default_tier=parse_tier(settings.default_tier),
            tiers={
                Tier.FAST: settings.fast,
                Tier.DEFAULT: settings.default,
                Tier.QUALITY: settings.quality,
            },
            allowed_tools=tuple(settings.allowed_tools),
        )

    def resolve(self, kind: TaskKind, tier_hint: Tier | str | None) -> TierProfile:
        tier = parse_tier(tier_hint) if tier_hint is not None else self.default_tier
        tier_settings = self.tiers[tier]
        max_turns = (
            tier_settings.edit_max_turns if kind is TaskKind.EDIT else tier_settings.chat_max_turns
        )
        allowed_tools = (
            self.allowed_tools if tier_settings.restrict_tools and kind is TaskKind.EDIT else None
        )
        return TierProfile(
            tier=tier,
            model=tier_settings.model,
            max_turns=max_turns,
            allowed_tools=allowed_tools,
        )


def parse_tier(value: Tier | str) -> Tier:
    if isinstance(value, Tier):
        return value
    normalized = value.strip().lower()
    try:
        return Tier(normalized)
    except ValueError as error:
        supported = ", ".join(tier.value for tier in Tier)
        raise ValueError(f"Unsupported tier: {value!r}. Use one of {supported}.") from error
