"""
Card Session Tests

Stage gating (NO_CARD -> LOADED -> PENDING -> COMMITTED -> NO_CARD), atomic
commit and the published session events.
"""

import pytest
from pubsub import pub

from mysihat_app.capacity import compute_usage
from mysihat_app.errors import (
    IdentityNotFound,
    IllegalTransition,
    IncompleteVisit,
    InvalidCode,
    InvalidDate,
)
from mysihat_app.models import SessionStage
from mysihat_app.protocol import date_code
from mysihat_app.session import TOPIC_STAGE, TOPIC_VISIT_COMMITTED, CardSession

AHMAD = "920815-01-5234"
AHMAD_VISITS = [
    ("251105", "E11", "A10BA02"),
    ("251120", "I10", "C09AA02"),
    ("251201", "R50", "N02BE01"),
]


@pytest.fixture
def chip(make_chip):
    return make_chip(AHMAD_VISITS, identity=AHMAD)


@pytest.fixture
def session(chip, codec):
    return CardSession({AHMAD: chip}.get, codec)


def test_unknown_identity(session):
    with pytest.raises(IdentityNotFound) as exc:
        session.load("000000-00-0000")

    assert exc.value.identity == "000000-00-0000"
    assert session.stage == SessionStage.NO_CARD
    assert session.chip is None


def test_load(session, chip):
    assert session.load(AHMAD) is chip
    assert session.stage == SessionStage.LOADED
    assert session.identity == AHMAD


def test_load_twice_is_illegal(session):
    session.load(AHMAD)

    with pytest.raises(IllegalTransition):
        session.load(AHMAD)
    assert session.stage == SessionStage.LOADED


def test_commit_without_staged_diagnosis(session, chip):
    session.load(AHMAD)
    before = chip.visits

    with pytest.raises(IllegalTransition):
        session.commit("N02BA01", "260101")

    assert session.stage == SessionStage.LOADED
    assert chip.visits == before


def test_operations_without_card(session):
    with pytest.raises(IllegalTransition):
        session.stage_diagnosis("R51")
    with pytest.raises(IllegalTransition):
        session.commit("N02BA01")
    assert session.stage == SessionStage.NO_CARD


def test_stage_invalid_diagnosis(session):
    session.load(AHMAD)

    with pytest.raises(InvalidCode):
        session.stage_diagnosis("XX99")

    assert session.stage == SessionStage.LOADED
    assert session.staged_diagnosis is None


def test_restage_diagnosis_while_pending(session):
    session.load(AHMAD)
    session.stage_diagnosis("R50")
    session.stage_diagnosis("R51")

    assert session.stage == SessionStage.PENDING
    assert session.staged_diagnosis == "R51"

    with pytest.raises(InvalidCode):
        session.stage_diagnosis("XX99")
    assert session.staged_diagnosis == "R51"


@pytest.mark.parametrize("medication,date,error", [
    ("", "260101", IncompleteVisit),
    (None, "260101", IncompleteVisit),
    ("XX99", "260101", InvalidCode),
    ("N02BA01", "2601", InvalidDate),
])
def test_failed_commit_leaves_state_unchanged(session, chip, medication, date, error):
    session.load(AHMAD)
    session.stage_diagnosis("R51")
    before = chip.visits

    with pytest.raises(error):
        session.commit(medication, date)

    assert session.stage == SessionStage.PENDING
    assert session.staged_diagnosis == "R51"
    assert chip.visits == before


def test_scenario_commit_visit(session, chip):
    session.load(AHMAD)
    usage = compute_usage(chip)
    assert usage.history_bytes == 54
    assert usage.percent_used == round((1024 + 54) / 30720 * 100, 1) == 3.5

    session.stage_diagnosis("R51")
    record = session.commit("N02BA01", "260101")

    assert session.stage == SessionStage.COMMITTED
    assert len(chip.visits) == 4
    assert chip.visits[-1] == record
    assert record.encoded_size == len("260101") + len("R51") + len("N02BA01") + 2 == 18
    assert compute_usage(chip).history_bytes == 72
    assert session.last_record == record
    assert session.last_evicted is None


def test_commit_defaults_to_today(session):
    session.load(AHMAD)
    session.stage_diagnosis("J00")

    record = session.commit("R06AE07")

    assert record.date == date_code()


def test_commit_twice_is_illegal(session, chip):
    session.load(AHMAD)
    session.stage_diagnosis("R51")
    session.commit("N02BA01", "260101")

    with pytest.raises(IllegalTransition):
        session.commit("N02BA01", "260102")
    with pytest.raises(IllegalTransition):
        session.stage_diagnosis("R50")
    assert len(chip.visits) == 4


def test_reset_from_any_stage(session, chip):
    session.reset()
    assert session.stage == SessionStage.NO_CARD

    session.load(AHMAD)
    session.stage_diagnosis("R51")
    session.reset()
    assert session.stage == SessionStage.NO_CARD
    assert session.staged_diagnosis is None
    assert len(chip.visits) == 3

    session.load(AHMAD)
    session.stage_diagnosis("R51")
    session.commit("N02BA01", "260101")
    session.reset()
    assert session.stage == SessionStage.NO_CARD
    assert session.chip is None
    # Committed visit stays with the chip owner
    assert len(chip.visits) == 4


def test_commit_evicts_oldest_when_full(make_chip, codec):
    chip = make_chip(AHMAD_VISITS, identity=AHMAD, max_visits=3)
    session = CardSession({AHMAD: chip}.get, codec)

    session.load(AHMAD)
    session.stage_diagnosis("R51")
    record = session.commit("N02BA01", "260101")

    assert len(chip.visits) == 3
    assert session.last_evicted.date == "251105"
    assert [v.date for v in chip.visits] == ["251120", "251201", "260101"]
    assert chip.visits[-1] == record


def test_writer_failure_rolls_back(chip, codec):
    def failing_writer(_chip):
        raise OSError("card removed")

    session = CardSession({AHMAD: chip}.get, codec, writer=failing_writer)
    session.load(AHMAD)
    session.stage_diagnosis("R51")
    before = chip.visits

    with pytest.raises(OSError):
        session.commit("N02BA01", "260101")

    assert chip.visits == before
    assert session.stage == SessionStage.PENDING


def test_writer_receives_committed_chip(chip, codec):
    written = []
    session = CardSession({AHMAD: chip}.get, codec, writer=lambda c: written.append(len(c.history)))

    session.load(AHMAD)
    session.stage_diagnosis("R51")
    session.commit("N02BA01", "260101")

    assert written == [4]


def test_events_published(session):
    stages = []
    visits = []

    def on_stage(old_stage, new_stage):
        stages.append((old_stage, new_stage))

    def on_visit(identity, record, evicted):
        visits.append((identity, record, evicted))

    pub.subscribe(on_stage, TOPIC_STAGE)
    pub.subscribe(on_visit, TOPIC_VISIT_COMMITTED)
    try:
        session.load(AHMAD)
        session.stage_diagnosis("R51")
        record = session.commit("N02BA01", "260101")
        session.reset()
    finally:
        pub.unsubscribe(on_stage, TOPIC_STAGE)
        pub.unsubscribe(on_visit, TOPIC_VISIT_COMMITTED)

    assert stages == [
        (SessionStage.NO_CARD, SessionStage.LOADED),
        (SessionStage.LOADED, SessionStage.PENDING),
        (SessionStage.PENDING, SessionStage.COMMITTED),
        (SessionStage.COMMITTED, SessionStage.NO_CARD),
    ]
    assert visits == [(AHMAD, record, None)]
