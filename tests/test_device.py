"""
Card Reader Tests

Simulated card I/O over the card store and raw card image dump/restore.
"""

import pytest

from mysihat_app.device import CardReader
from mysihat_app.errors import IdentityNotFound, MalformedPayload
from mysihat_app.models import ClinicConfig
from mysihat_app.protocol import CardImage

AHMAD = "920815-01-5234"
SITI = "880523-14-6789"


@pytest.fixture
def reader(store):
    return CardReader(store, ClinicConfig(read_delay=0, write_delay=0))


def test_read_and_write(reader, codec):
    chip = reader.read(f"  {AHMAD} ")
    assert chip.identity == AHMAD

    chip.history.append(codec.build_record("260101", "R51", "N02BA01"))
    reader.write(chip)

    assert len(reader.read(AHMAD).visits) == 4
    assert reader.reads == 2
    assert reader.writes == 1


def test_read_unknown(reader):
    assert reader.read("000000-00-0000") is None


def test_dump_image(reader):
    chip = reader.read(AHMAD)

    image = CardImage.decode(reader.dump_image(chip))

    assert image.max_visits == 200
    assert image.critical_block_size == 1024
    assert image.payloads[0] == b"251105|E11|A10BA02"
    assert len(image.payloads) == 3


def test_load_image_restores_history(reader):
    data = reader.dump_image(reader.read(AHMAD))

    restored = reader.load_image(SITI, data)

    assert restored.profile.name == "Siti binti Hassan"
    assert [v.date for v in reader.read(SITI).visits] == ["251105", "251120", "251201"]


def test_load_image_errors(reader):
    data = reader.dump_image(reader.read(AHMAD))

    with pytest.raises(IdentityNotFound):
        reader.load_image("000000-00-0000", data)
    with pytest.raises(MalformedPayload):
        reader.load_image(SITI, b"\x00" * 12)
