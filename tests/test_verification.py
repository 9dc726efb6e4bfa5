from datetime import datetime

import pytest
import pytest_asyncio

from biotrack.core.exceptions import (
    AlreadyEnrolled,
    DuplicateIdentity,
    IdentityNotFound,
    InvalidEmbedding,
    NoEnrolledIdentities,
    NotRecognized,
)
from biotrack.crud.attendance import list_open_records
from biotrack.config import load_settings
from biotrack.crud.identity import create_identity, get_identity, load_embedding_snapshot
from biotrack.models.identity import Identity
from biotrack.services.enrollment import enroll_embedding
from biotrack.services.verification import VerificationCoordinator, VerificationMode


def at(hour, minute):
    return datetime(2024, 1, 1, hour, minute)


@pytest.fixture
def coordinator(ledger):
    return VerificationCoordinator(ledger, login_threshold=0.6, kiosk_threshold=0.3)


@pytest_asyncio.fixture
async def enrolled_class(db, enroll, make_class):
    await enroll("alice", [0.0, 0.0, 1.0])
    await enroll("bob", [1.0, 0.0, 0.0])
    return await make_class("Algebra", [("Monday", "9:00", "10:00")], members=["alice", "bob"], join_code="ALGE123")


async def test_kiosk_scan_times_in_then_out(db, coordinator, enrolled_class):
    outcome = await coordinator.verify(db, [0.0, 0.1, 1.0], now=at(9, 30), mode=VerificationMode.KIOSK)
    assert outcome.identity_id == "alice"
    assert outcome.action == "time_in"
    assert outcome.match.threshold == 0.3
    assert outcome.result.record.verification_method == "face_recognition"

    outcome = await coordinator.verify(db, [0.0, 0.1, 1.0], now=at(10, 5))
    assert outcome.action == "time_out"


async def test_unrecognized_sample_never_reaches_the_ledger(db, coordinator, enrolled_class):
    # 0.45 away: inside the login threshold, outside the kiosk one
    sample = [0.0, 0.45, 1.0]
    with pytest.raises(NotRecognized) as exc_info:
        await coordinator.verify(db, sample, now=at(9, 30), mode=VerificationMode.KIOSK)
    assert exc_info.value.detail["threshold"] == 0.3
    assert await list_open_records(db, "alice", "2024-01-01") == []

    outcome = await coordinator.verify(db, sample, now=at(9, 30), mode=VerificationMode.LOGIN)
    assert outcome.identity_id == "alice"


async def test_no_enrolled_identities(db, coordinator):
    with pytest.raises(NoEnrolledIdentities):
        await coordinator.verify(db, [0.1, 0.2, 0.3], now=at(9, 30))


async def test_malformed_sample(db, coordinator, enrolled_class):
    with pytest.raises(InvalidEmbedding):
        await coordinator.verify(db, [0.1, float("nan"), 0.3], now=at(9, 30))


async def test_snapshot_skips_malformed_embeddings(db, enroll):
    await enroll("alice", [0.0, 0.0, 1.0])
    db.add(Identity(identity_id="broken", display_name="Broken", role="student", embedding="not json"))
    await db.commit()

    assert list(await load_embedding_snapshot(db)) == ["alice"]


async def test_enrollment_rejects_a_face_owned_by_someone_else(db, enroll):
    await enroll("alice", [0.0, 0.0, 1.0])
    await create_identity(db, "mallory", "Mallory")

    with pytest.raises(DuplicateIdentity):
        await enroll_embedding(db, "mallory", [0.0, 0.05, 1.0], duplicate_threshold=0.6)

    identity = await enroll_embedding(db, "mallory", [1.0, 0.0, 0.0], duplicate_threshold=0.6)
    assert identity.is_enrolled


async def test_embedding_is_written_once(db, enroll):
    await enroll("alice", [0.0, 0.0, 1.0])
    with pytest.raises(AlreadyEnrolled):
        await enroll_embedding(db, "alice", [1.0, 0.0, 0.0], duplicate_threshold=0.6)
    with pytest.raises(IdentityNotFound):
        await enroll_embedding(db, "nobody", [1.0, 0.0, 0.0], duplicate_threshold=0.6)


async def test_identity_is_created_enrolled_in_one_write(db):
    identity = await create_identity(db, "carol", "Carol", embedding=[0.6, 0.8, 0.0])
    assert identity.is_enrolled
    assert identity.enrolled_at is not None

    stored = await get_identity(db, "carol")
    assert stored.is_enrolled
    assert list(await load_embedding_snapshot(db)) == ["carol"]

    bare = await create_identity(db, "dave", "Dave")
    assert not bare.is_enrolled
    assert bare.enrolled_at is None


def test_face_model_thresholds_are_separate(monkeypatch):
    for name in ("FACE_LOGIN_MATCH_THRESHOLD", "FACE_KIOSK_MATCH_THRESHOLD", "LOGIN_MATCH_THRESHOLD"):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings()
    assert settings.face_login_match_threshold == 0.89
    assert settings.face_kiosk_match_threshold == 0.8
    assert settings.login_match_threshold == 0.6

    monkeypatch.setenv("FACE_KIOSK_MATCH_THRESHOLD", "0.75")
    assert load_settings().face_kiosk_match_threshold == 0.75


async def test_unit_embeddings_same_person_match_at_face_thresholds(db, ledger, enrolled_class):
    # Cosine 0.7 to alice: a typical same-person score for the face model,
    # but 0.775 away, far outside the descriptor thresholds
    sample = [0.0, 0.51 ** 0.5, 0.7]
    descriptor = VerificationCoordinator(ledger, login_threshold=0.6, kiosk_threshold=0.3)
    face = VerificationCoordinator(ledger, login_threshold=0.89, kiosk_threshold=0.8)

    with pytest.raises(NotRecognized):
        await descriptor.verify(db, sample, now=at(9, 30), mode=VerificationMode.LOGIN)

    outcome = await face.verify(db, sample, now=at(9, 30), mode=VerificationMode.KIOSK)
    assert outcome.identity_id == "alice"
    assert outcome.match.threshold == 0.8
    assert outcome.match.distance == pytest.approx(0.6 ** 0.5)
