"""
Completion / Reward Pipeline

Runs once a lesson finishes on either channel:
1. Persist the finalized session record
2. Send the caregiver a bilingual summary (if a caregiver is known)
3. Work out the learner's airtime tier, send it, confirm by SMS
4. Same for the caregiver

Every step is attempted independently and reported on its own. A failed
caregiver SMS doesn't stop the reward, and a failed reward doesn't undo
anything already done. Retrying is the caller's business.
"""

import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from pydantic import BaseModel, Field

from soundsteps.config import Settings
from soundsteps.models.session import Session, SessionStatus
from soundsteps.services import messages
from soundsteps.services.provider import ProviderAdapter
from soundsteps.services.rewards import reward_amount
from soundsteps.services.session import SessionStore

logger = logging.getLogger(__name__)


# =============================================================================
# DATA MODELS
# =============================================================================

class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"      # nothing to do, e.g. score below reward threshold


class StepResult(BaseModel):
    step: str
    status: StepStatus
    detail: Optional[str] = None
    error: Optional[str] = None


class CompletionReport(BaseModel):
    """Per-step outcome of one pipeline run."""
    session_id: str
    score: int
    total: int
    percentage: int
    steps: List[StepResult] = Field(default_factory=list)

    def step(self, name: str) -> Optional[StepResult]:
        for result in self.steps:
            if result.step == name:
                return result
        return None

    @property
    def failed_steps(self) -> List[str]:
        return [s.step for s in self.steps if s.status == StepStatus.FAILED]


# =============================================================================
# PIPELINE
# =============================================================================

class CompletionPipeline:

    def __init__(self, store: SessionStore, provider: ProviderAdapter, settings: Settings):
        self.store = store
        self.provider = provider
        self.settings = settings

    async def run(
        self,
        session: Session,
        lesson_title: str,
        learner_name: Optional[str] = None,
        language: Optional[str] = None
    ) -> CompletionReport:
        language = messages.resolve_language(
            language or session.language, self.settings.default_language
        )
        learner_name = learner_name or session.learner_name or self.settings.default_learner_name
        total = session.total_questions
        report = CompletionReport(
            session_id=session.id,
            score=session.score,
            total=total,
            percentage=session.percentage,
        )
        logger.info(
            "[Completion] Session %s: %s/%s (%s%%)",
            session.id, session.score, total, session.percentage
        )

        # Step 1: persist final status
        await self._attempt(report, "persist_status", lambda: self._persist(session))

        # Step 2: caregiver summary
        if session.caregiver_phone:
            body = messages.caregiver_summary(
                learner_name, lesson_title, session.score, total,
                language, self.settings.pass_threshold
            )
            await self._attempt(
                report, "caregiver_summary",
                lambda: self._send(session.caregiver_phone, body)
            )
        else:
            report.steps.append(StepResult(
                step="caregiver_summary",
                status=StepStatus.SKIPPED,
                detail="no caregiver phone"
            ))

        # Step 3/4: airtime rewards
        await self._reward(report, session, session.learner_phone, "learner", language)
        if session.caregiver_phone and self.settings.reward_caregivers:
            await self._reward(report, session, session.caregiver_phone, "caregiver", language)

        if report.failed_steps:
            logger.warning(
                "[Completion] Session %s finished with failed steps: %s",
                session.id, ", ".join(report.failed_steps)
            )
        return report

    async def _persist(self, session: Session) -> str:
        if not session.is_terminal:
            session.finish(SessionStatus.COMPLETED)
        await self.store.finalize(session)
        return f"status {session.status.value}"

    async def _send(self, to: str, body: str) -> str:
        result = await self.provider.send_text(to, body)
        return result.reference or "sent"

    async def _reward(
        self,
        report: CompletionReport,
        session: Session,
        phone: str,
        recipient: str,
        language: str
    ) -> None:
        step = f"{recipient}_reward"
        amount = reward_amount(
            session.score, session.total_questions,
            self.settings.reward_tiers, recipient
        )
        if amount <= 0:
            report.steps.append(StepResult(
                step=step,
                status=StepStatus.SKIPPED,
                detail="below reward threshold"
            ))
            logger.info("[Completion] No %s reward for %s%%", recipient, session.percentage)
            return

        currency = self.settings.at_currency

        async def dispatch() -> str:
            await self.provider.send_airtime(phone, amount, currency)
            return f"{currency} {amount}"

        sent = await self._attempt(report, step, dispatch)
        if sent:
            body = messages.reward_confirmation(amount, currency, recipient, language)
            await self._attempt(
                report, f"{step}_confirmation",
                lambda: self._send(phone, body)
            )

    async def _attempt(
        self,
        report: CompletionReport,
        step: str,
        action: Callable[[], Awaitable[str]]
    ) -> bool:
        try:
            detail = await action()
        except Exception as e:
            logger.exception("[Completion] Step %s failed for %s", step, report.session_id)
            report.steps.append(StepResult(step=step, status=StepStatus.FAILED, error=str(e)))
            return False
        report.steps.append(StepResult(step=step, status=StepStatus.SUCCEEDED, detail=detail))
        return True
