"""Shared fixtures for the MySihat tests."""

import pytest

from mysihat_app.controller import ClinicTerminal
from mysihat_app.models import ClinicConfig, PatientChip, PatientProfile
from mysihat_app.protocol import VisitCodec
from mysihat_app.storage import ChipStore


@pytest.fixture
def codec():
    return VisitCodec()


@pytest.fixture
def store(tmp_path, codec):
    s = ChipStore(str(tmp_path / "cards.db"), codec)
    s.seed_demo_patients()
    return s


@pytest.fixture
def config(tmp_path):
    return ClinicConfig(
        read_delay=0,
        write_delay=0,
        db_path=str(tmp_path / "terminal.db"),
        log_file=str(tmp_path / "mysihat.log"),
    )


@pytest.fixture
def terminal(config):
    t = ClinicTerminal(config, setup_logging=False)
    yield t
    t.shutdown()


@pytest.fixture
def make_chip(codec):
    """Build a chip from (date, diagnosis, medication) tuples."""
    def _make(visits=(), identity="900101-01-0001", max_visits=200, **kwargs):
        records = [codec.build_record(*v) for v in visits]
        return PatientChip.create(
            identity,
            PatientProfile("Test Patient", "AB+"),
            records,
            max_visits=max_visits,
            **kwargs,
        )
    return _make
