import pytest
import yaml

from hearth.core.errors import PhaseTransitionError, StateStoreError
from hearth.core.models import PhaseState
from hearth.core.store import PhaseStore, PHASE_KEY, SOURCE_VIP_KEY

from conftest import SPEC, IDENTITY


def test_missing_file_reads_as_unconfigured(tmp_path):
    store = PhaseStore(str(tmp_path / "state.yaml"))
    assert store.read_phase() == PhaseState.UNCONFIGURED
    assert store.read_all() == {}


def test_phase_advances_one_step_at_a_time(tmp_path):
    store = PhaseStore(str(tmp_path / "state.yaml"))

    with pytest.raises(PhaseTransitionError):
        store.advance(PhaseState.READY)

    store.advance(PhaseState.PREPARED)
    assert store.read_phase() == PhaseState.PREPARED

    store.advance(PhaseState.READY)
    assert PhaseStore(str(tmp_path / "state.yaml")).read_phase() == PhaseState.READY


def test_phase_never_regresses(tmp_path):
    store = PhaseStore(str(tmp_path / "state.yaml"))
    store.advance(PhaseState.PREPARED)
    store.advance(PhaseState.READY)

    for target in (PhaseState.UNCONFIGURED, PhaseState.PREPARED, PhaseState.READY):
        with pytest.raises(PhaseTransitionError):
            store.advance(target)
    assert store.read_phase() == PhaseState.READY


def test_commit_replaces_file_and_leaves_no_temp_files(tmp_path):
    path = tmp_path / "state.yaml"
    store = PhaseStore(str(path))
    store.update({"KUBE_VERSION": "v1.21.3"})
    store.advance(PhaseState.PREPARED)

    assert yaml.safe_load(path.read_text()) == {"KUBE_VERSION": "v1.21.3", PHASE_KEY: "prepared"}
    assert [p.name for p in tmp_path.iterdir()] == ["state.yaml"]


def test_parameters_survive_a_new_store_instance(tmp_path):
    PhaseStore(str(tmp_path / "state.yaml")).save_parameters(SPEC, IDENTITY)

    spec, identity = PhaseStore(str(tmp_path / "state.yaml")).load_parameters()

    assert spec == SPEC
    assert identity == IDENTITY


def test_incomplete_parameters_are_rejected(tmp_path):
    store = PhaseStore(str(tmp_path / "state.yaml"))
    store.update({PHASE_KEY: "prepared", "KUBE_CLUSTER_CIDR": "100.64.0.0/10"})

    with pytest.raises(PhaseTransitionError, match="KUBE_SERVICE_CIDR"):
        store.load_parameters()


def test_corrupted_state_file(tmp_path):
    path = tmp_path / "state.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(StateStoreError):
        PhaseStore(str(path)).read_all()

    path.write_text("NODE_STATE: [unclosed\n")
    with pytest.raises(StateStoreError):
        PhaseStore(str(path)).read_phase()


def test_unknown_phase_value(tmp_path):
    path = tmp_path / "state.yaml"
    path.write_text("NODE_STATE: half-done\n")
    with pytest.raises(StateStoreError, match="half-done"):
        PhaseStore(str(path)).read_phase()


def test_source_vip_is_kept_next_to_parameters(tmp_path):
    store = PhaseStore(str(tmp_path / "state.yaml"))
    store.save_parameters(SPEC, IDENTITY)
    assert store.read_source_vip() is None

    store.save_source_vip("100.96.3.2")

    reloaded = PhaseStore(str(tmp_path / "state.yaml"))
    assert reloaded.read_source_vip() == "100.96.3.2"
    assert reloaded.read_all()[SOURCE_VIP_KEY] == "100.96.3.2"
    assert reloaded.load_parameters() == (SPEC, IDENTITY)
