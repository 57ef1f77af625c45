"""Step decoding from the backend wire form."""

import json
from typing import Any

from knapsack.domain.enums import DataSource, StepName

from .advisor import AboutMeStep, BusinessCoachStep, SocialMediaPlannerStep, StrategicPlanStep
from .base import Step
from .email import EmailSummaryStep, FinraComplianceStep, LeadScoringStep, PostSafelyStep
from .meeting import MeetingPrepStep
from .search import PromptStep, SemanticSearchStep


class UnknownStepError(ValueError):
    """Step name is not one of the known variants."""


def _load_args(raw: str | dict[str, Any] | None) -> dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        decoded = json.loads(raw)
        return decoded if isinstance(decoded, dict) else {}
    return dict(raw)


def decode_step(name: str, raw_args: str | dict[str, Any] | None = None) -> Step:
    """Build a step from its wire name and arguments.

    Args:
        name: Wire tag, for example ``"semantic-search"``.
        raw_args: Arguments as a JSON string or an already decoded mapping.

    Returns:
        The step variant.

    Raises:
        UnknownStepError: If the name is not a known step.

    """
    try:
        tag = StepName(name)
    except ValueError as e:
        msg = f"Unknown automation step: {name}"
        raise UnknownStepError(msg) from e

    args = _load_args(raw_args)

    match tag:
        case StepName.PROMPT:
            return PromptStep(user_prompt=args.get("userPrompt", ""))
        case StepName.SEMANTIC_SEARCH:
            return SemanticSearchStep(
                sources=[DataSource(source) for source in args.get("sources", [])],
                user_prompt=args.get("userPrompt", ""),
                use_local=bool(args.get("useLocal", False)),
                description_other_cadence=args.get("descriptionOtherCadence"),
            )
        case StepName.EMAIL_SUMMARY:
            return EmailSummaryStep()
        case StepName.MEETING_PREP:
            return MeetingPrepStep()
        case StepName.FINRA_COMPLIANCE:
            return FinraComplianceStep()
        case StepName.LEAD_SCORING:
            return LeadScoringStep()
        case StepName.POST_SAFELY:
            return PostSafelyStep()
        case StepName.STRATEGIC_PLAN:
            return StrategicPlanStep()
        case StepName.BUSINESS_COACH:
            return BusinessCoachStep()
        case StepName.ABOUT_ME:
            return AboutMeStep()
        case StepName.SOCIAL_MEDIA_PLANNER:
            return SocialMediaPlannerStep()
