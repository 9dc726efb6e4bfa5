"""
Verification coordinator: live sample -> identity -> ledger transition.

Holds no state of its own; every call takes a fresh snapshot of enrolled
embeddings, so an identity enrolled mid-scan may not be seen until the next
attempt. A sample that matches nobody never reaches the ledger.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from biotrack.core.exceptions import NotRecognized
from biotrack.crud.identity import load_embedding_snapshot
from biotrack.services.ledger import LedgerResult, SessionLedger
from biotrack.services.matcher import Matcher, MatchResult
from biotrack.utils.face_helper import validate_embedding

logger = logging.getLogger(__name__)


class VerificationMode(str, Enum):
    LOGIN = "login"
    KIOSK = "kiosk"


@dataclass
class VerificationOutcome:
    match: MatchResult
    result: LedgerResult

    @property
    def identity_id(self) -> str:
        return self.match.identity_id

    @property
    def action(self) -> str:
        return self.result.action


class VerificationCoordinator:
    def __init__(self, ledger: SessionLedger, login_threshold: float = 0.6, kiosk_threshold: float = 0.3):
        self.ledger = ledger
        self.thresholds = {
            VerificationMode.LOGIN: login_threshold,
            VerificationMode.KIOSK: kiosk_threshold,
        }

    def threshold_for(self, mode: VerificationMode) -> float:
        return self.thresholds[VerificationMode(mode)]

    async def identify(self, db: AsyncSession, sample: Sequence[float], threshold: float) -> MatchResult:
        sample = validate_embedding(list(sample))
        matcher = Matcher(await load_embedding_snapshot(db))
        match = matcher.match(sample, threshold)

        if not match.is_match:
            logger.warning(f"Sample not recognized: best distance {match.distance:.4f} > {threshold}")
            raise NotRecognized(
                "Face not recognized",
                distance=round(match.distance, 4),
                threshold=threshold
            )

        logger.info(f"Recognized {match.identity_id} at distance {match.distance:.4f}")
        return match

    async def verify(
            self,
            db: AsyncSession,
            sample: Sequence[float],
            now: Optional[datetime] = None,
            mode: VerificationMode = VerificationMode.KIOSK,
            class_id: Optional[int] = None,
            verification_method: str = "face_recognition"
    ) -> VerificationOutcome:
        now = now or datetime.now()
        match = await self.identify(db, sample, self.threshold_for(mode))
        result = await self.ledger.record_attendance(
            db,
            match.identity_id,
            now,
            class_id=class_id,
            verification_method=verification_method
        )
        return VerificationOutcome(match=match, result=result)
