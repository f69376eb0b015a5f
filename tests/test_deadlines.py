import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlmodel import select, func

from app.core import exceptions as errors
from app.db.models import ConsultationEvent, ConsultationStatus
from app.services.consultation_service import Decision
from app.services.deadline_service import DeadlineService
from app.services.request_store import RequestStore
from app.workers.expiry_sweeper import run_expiry_sweeper, sweep_once


async def count_events(session, consultation_id, action=None):
    stmt = select(func.count(ConsultationEvent.id)).where(ConsultationEvent.consultation_id == consultation_id)
    if action:
        stmt = stmt.where(ConsultationEvent.action == action)
    result = await session.execute(stmt)
    return result.scalar()


@pytest.mark.asyncio
async def test_status_flips_to_expired_after_deadline(service, practitioner, patient_id, clock):
    consultation = await service.create_request(patient_id, practitioner.id, None, patient_id)

    clock.advance(59)
    assert (await service.get_status(consultation.id, patient_id)).status == ConsultationStatus.PENDING_ACCEPTANCE

    clock.advance(2)
    for _ in range(3):
        current = await service.get_status(consultation.id, practitioner.id)
        assert current.status == ConsultationStatus.EXPIRED
        assert current.version == 2

    assert current.expired_at == clock.now
    assert current.active_practitioner_id is None
    assert await count_events(service.session, consultation.id, "expire") == 1


@pytest.mark.asyncio
async def test_deadline_is_fixed_at_creation(service, practitioner, patient_id, clock):
    consultation = await service.create_request(patient_id, practitioner.id, None, patient_id)
    deadline = consultation.acceptance_deadline

    clock.advance(10)
    await service.capture_payment(consultation.id, patient_id, "card")
    accepted = await service.respond(consultation.id, practitioner.id, Decision.ACCEPT)

    assert accepted.acceptance_deadline == deadline


@pytest.mark.asyncio
async def test_sweep_expires_only_overdue_requests(make_service, directory, clock, session_factory):
    patients = [uuid4(), uuid4()]
    early = await make_service().create_request(patients[0], directory.add().id, None, patients[0])
    clock.advance(30)
    late = await make_service().create_request(patients[1], directory.add().id, None, patients[1])
    clock.advance(31)

    async with session_factory() as session:
        expired = await DeadlineService(RequestStore(session), clock).sweep()
    assert expired == 1

    async with session_factory() as session:
        assert await DeadlineService(RequestStore(session), clock).sweep() == 0
        store = RequestStore(session)
        assert (await store.get(early.id)).status == ConsultationStatus.EXPIRED
        assert (await store.get(late.id)).status == ConsultationStatus.PENDING_ACCEPTANCE


@pytest.mark.asyncio
async def test_sweep_respects_batch_size(make_service, directory, clock, session_factory):
    for _ in range(3):
        patient = uuid4()
        await make_service().create_request(patient, directory.add().id, None, patient)
    clock.advance(61)

    assert await sweep_once(session_factory, clock, batch_size=2) == 2
    assert await sweep_once(session_factory, clock, batch_size=2) == 1


@pytest.mark.asyncio
async def test_concurrent_sweeps_expire_each_request_once(make_service, directory, clock, session_factory):
    consultations = []
    for _ in range(5):
        patient = uuid4()
        consultations.append(await make_service().create_request(patient, directory.add().id, None, patient))
    clock.advance(61)

    async with session_factory() as first, session_factory() as second:
        counts = await asyncio.gather(
            DeadlineService(RequestStore(first), clock).sweep(),
            DeadlineService(RequestStore(second), clock).sweep(),
        )

    assert sum(counts) == len(consultations)
    async with session_factory() as session:
        store = RequestStore(session)
        for consultation in consultations:
            current = await store.get(consultation.id)
            assert current.status == ConsultationStatus.EXPIRED
            assert current.version == 2
            assert await count_events(session, consultation.id, "expire") == 1


@pytest.mark.asyncio
async def test_accept_and_sweep_race_single_winner(make_service, make_clock, practitioner, patient_id, clock, session_factory):
    consultation = await make_service().create_request(patient_id, practitioner.id, None, patient_id)
    # The practitioner clicks just before the deadline, the sweeper runs just after it
    responder = make_service(make_clock(clock.now + timedelta(seconds=59)))
    sweeper_clock = make_clock(clock.now + timedelta(seconds=61))

    async with session_factory() as session:
        sweeper = DeadlineService(RequestStore(session), sweeper_clock)
        accept_result, swept = await asyncio.gather(
            responder.respond(consultation.id, practitioner.id, Decision.ACCEPT),
            sweeper.sweep(),
            return_exceptions=True,
        )

    async with session_factory() as session:
        final = await RequestStore(session).get(consultation.id)
        transitions = await count_events(session, consultation.id) - 1

    assert final.version == 2
    assert transitions == 1
    if final.status == ConsultationStatus.WAITING:
        assert swept == 0
        assert accept_result.status == ConsultationStatus.WAITING
    else:
        assert final.status == ConsultationStatus.EXPIRED
        assert swept == 1
        assert isinstance(accept_result, errors.DeadlinePassed)


@pytest.mark.asyncio
async def test_cas_admits_one_writer_per_version(make_service, practitioner, patient_id, session_factory):
    consultation = await make_service().create_request(patient_id, practitioner.id, None, patient_id)

    async with session_factory() as first_session, session_factory() as second_session:
        first, second = RequestStore(first_session), RequestStore(second_session)
        snapshot_a = await first.get(consultation.id)
        snapshot_b = await second.get(consultation.id)

        won = await first.compare_and_set(
            snapshot_a, 1, {"status": ConsultationStatus.WAITING}, action="accept"
        )
        lost = await second.compare_and_set(
            snapshot_b, 1, {"status": ConsultationStatus.EXPIRED}, action="expire"
        )

    assert won is not None and won.version == 2
    assert lost is None


@pytest.mark.asyncio
async def test_cas_refuses_undefined_edge(service, practitioner, patient_id):
    consultation = await service.create_request(patient_id, practitioner.id, None, patient_id)

    with pytest.raises(errors.InvalidTransition):
        await service.store.compare_and_set(
            consultation, consultation.version, {"status": ConsultationStatus.COMPLETED}, action="end"
        )

    assert (await service.store.get(consultation.id)).version == 1


@pytest.mark.asyncio
async def test_cas_refuses_unpaid_session_start(service, practitioner, patient_id):
    consultation = await service.create_request(patient_id, practitioner.id, None, patient_id)
    waiting = await service.respond(consultation.id, practitioner.id, Decision.ACCEPT)

    with pytest.raises(errors.PaymentRequired):
        await service.store.compare_and_set(
            waiting, waiting.version, {"status": ConsultationStatus.IN_PROGRESS}, action="start"
        )


@pytest.mark.asyncio
async def test_background_sweeper_expires_abandoned_requests(make_service, practitioner, patient_id, clock, session_factory):
    consultation = await make_service().create_request(patient_id, practitioner.id, None, patient_id)
    clock.advance(61)

    task = asyncio.create_task(run_expiry_sweeper(interval=0.01, session_factory=session_factory, clock=clock))
    try:
        for _ in range(200):
            async with session_factory() as session:
                current = await RequestStore(session).get(consultation.id)
            if current.status == ConsultationStatus.EXPIRED:
                break
            await asyncio.sleep(0.01)
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert current.status == ConsultationStatus.EXPIRED


@pytest.mark.asyncio
async def test_background_sweeper_survives_errors(session_factory, clock):
    calls = 0

    def flaky_factory():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("database restarting")
        return session_factory()

    task = asyncio.create_task(run_expiry_sweeper(interval=0.01, session_factory=flaky_factory, clock=clock))
    for _ in range(100):
        if calls >= 3:
            break
        await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert calls >= 3
