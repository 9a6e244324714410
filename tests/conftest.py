"""
Shared fixtures for registry tests.

Seeded families sit far apart in feature space (offsets of 20 per family), so
cross-family scores are ~0 and every in-family score is 1 / (1 + delta) where
delta is the shift applied to the first vector component.
"""

import os
import shutil
import tempfile

import pytest

from soul_registry.core.config import RegistrySettings
from soul_registry.core.resolution import ResolutionService
from soul_registry.core.schema import PackageRecord, Topology
from soul_registry.store.index import InMemoryRecordStore

BASE_VECTOR = [1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0]
BASE_TOPOLOGY = Topology(count=10.0, clustering=0.5, modularity=0.4)


def family_vector(offset: float, delta: float = 0.0):
    """BASE_VECTOR shifted by offset, with delta added to the first component."""
    vector = [x + offset for x in BASE_VECTOR]
    vector[0] += delta
    return vector


def make_record(name, registry="npm", vector=None, topology=None, version="1.0.0"):
    return PackageRecord(
        name=name,
        registry=registry,
        version=version,
        feature_vector=list(vector if vector is not None else BASE_VECTOR),
        topology=topology or BASE_TOPOLOGY,
    )


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def service(store):
    return ResolutionService(store, RegistrySettings())


@pytest.fixture
def seeded_service(service):
    """
    lodash   <-> lodash-rs     0.9615  perfect
    axios    <-> axios-rs      0.9091  resonant, no bucket
    moment   <-> chrono        0.5     upgrade (time scores 0.9091)
    request  <-> reqwest-bad   0.25    parasitic (hyper, ureq, isahc, surf nearby)
    solo                       unpaired
    """
    service.register(make_record("lodash", vector=family_vector(0)),
                     make_record("lodash-rs", "crate", family_vector(0, 0.04)))
    service.register(make_record("axios", vector=family_vector(60)),
                     make_record("axios-rs", "crate", family_vector(60, 0.1)))

    service.register(make_record("moment", vector=family_vector(20)),
                     make_record("chrono", "crate", family_vector(20, 1.0)))
    service.register(make_record("time", vector=family_vector(20, 0.1)))

    service.register(make_record("request", vector=family_vector(40)),
                     make_record("reqwest-bad", "crate", family_vector(40, 3.0)))
    for name, delta in (("hyper", 0.2), ("ureq", 0.5), ("isahc", 0.8), ("surf", 0.9)):
        service.register(make_record(name, vector=family_vector(40, delta)))

    service.register(make_record("solo", vector=family_vector(80)))
    return service


@pytest.fixture
def test_db():
    """Create a temporary database path for SQLite-backed tests."""
    test_dir = tempfile.mkdtemp()
    db_path = os.path.join(test_dir, "test_registry.db")

    yield db_path

    shutil.rmtree(test_dir)
