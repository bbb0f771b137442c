"""
Card Store Tests

SQLite identity directory: demo seeding, lookup, write-back and the chip
geometry applied to loaded cards.
"""

from mysihat_app.models import ChipConfig, PatientProfile
from mysihat_app.storage import ChipStore

AHMAD = "920815-01-5234"
SITI = "880523-14-6789"
KUMAR = "750310-03-4521"


def test_seeded_identities(store):
    assert store.get_all_identities() == sorted([AHMAD, SITI, KUMAR])
    assert store.get_visit_count() == 5
    assert store.get_visit_count(AHMAD) == 3


def test_seed_is_idempotent(store):
    assert store.seed_demo_patients() == 0
    assert store.get_visit_count() == 5

    assert store.seed_demo_patients(overwrite=True) == 3
    assert store.get_visit_count() == 5


def test_lookup_demo_patient(store):
    chip = store.lookup(AHMAD)

    assert chip.identity == AHMAD
    assert chip.profile == PatientProfile("Ahmad bin Abdullah", "O+", ("Penicillin",), ("E11", "I10"))
    assert [v.fields for v in chip.visits] == [
        ("251105", "E11", "A10BA02"),
        ("251120", "I10", "C09AA02"),
        ("251201", "R50", "N02BE01"),
    ]
    assert [v.encoded_size for v in chip.visits] == [18, 18, 18]
    assert chip.critical_block_size == 1024
    assert chip.total_capacity == 30720
    assert chip.max_visit_count == 200


def test_lookup_new_patient_without_visits(store):
    chip = store.lookup(KUMAR)

    assert chip.visits == []
    assert chip.profile.allergies == ()


def test_lookup_unknown(store):
    assert store.lookup("000000-00-0000") is None


def test_save_persists_history(store, codec):
    chip = store.lookup(SITI)
    chip.history.append(codec.build_record("260101", "J00", "R06AE07"))
    store.save(chip)

    reloaded = store.lookup(SITI)
    assert reloaded is not chip
    assert len(reloaded.visits) == 3
    assert reloaded.visits[-1].fields == ("260101", "J00", "R06AE07")
    assert store.get_visit_count(SITI) == 3


def test_lookup_returns_independent_chips(store, codec):
    first = store.lookup(AHMAD)
    first.history.append(codec.build_record("260101", "R51", "N02BA01"))

    assert len(store.lookup(AHMAD).visits) == 3


def test_register_card(store):
    chip = store.register("010101-01-0101", PatientProfile("New Card"), [("260101", "R50", "N02BE01")])

    assert len(chip.visits) == 1
    assert store.lookup("010101-01-0101").visits == chip.visits


def test_chip_config_applied(tmp_path, codec):
    store = ChipStore(
        str(tmp_path / "small.db"),
        codec,
        ChipConfig(critical_block_size=512, total_capacity=2048, max_visit_count=2),
    )
    store.seed_demo_patients()

    chip = store.lookup(AHMAD)
    assert chip.max_visit_count == 2
    assert [v.date for v in chip.visits] == ["251120", "251201"]
    assert chip.critical_block_size == 512
    assert chip.total_capacity == 2048
