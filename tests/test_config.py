"""
Test suite for TriCurve engine configuration

Covers:
  - defaults match the protocol constants
  - from_dict section parsing and validation errors
  - TOML file loading, missing file fallback
  - TRICURVE_* environment overrides
  - immutability and dict round trip
"""

import dataclasses

import pytest

from tricurve.config import (
    CommitmentConfig,
    ConservationConfig,
    EngineConfig,
    FeeConfig,
    IntegrationConfig,
    OracleConfig,
    load_config,
)
from tricurve.constants import MAX_FEE_BPS, MIN_FEE_BPS, MIN_UPDATE_INTERVAL, TWAP_WINDOW_SECONDS
from tricurve.engine import MarketEngine


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("TRICURVE_CONFIG", raising=False)
    monkeypatch.delenv("TRICURVE_FEES_KAPPA_BPS", raising=False)
    monkeypatch.delenv("TRICURVE_ORACLE_TWAP_WINDOW", raising=False)


# ============================================================================
#  DEFAULTS / DICT PARSING
# ============================================================================

class TestDefaults:
    def test_defaults(self):
        cfg = EngineConfig()
        assert cfg.validate()
        assert cfg.integration.max_step_bps == 100
        assert cfg.integration.curvature_threshold_bps == 10
        assert cfg.conservation.epsilon == 1 << 24
        assert cfg.fees.kappa_bps == 5000
        assert (cfg.fees.min_fee_bps, cfg.fees.max_fee_bps) == (MIN_FEE_BPS, MAX_FEE_BPS)
        assert cfg.commitment.min_update_interval == MIN_UPDATE_INTERVAL
        assert cfg.oracle.twap_window == TWAP_WINDOW_SECONDS

    def test_empty_dict_is_default(self):
        assert EngineConfig.from_dict({}) == EngineConfig()

    def test_section_values(self):
        cfg = EngineConfig.from_dict({
            "fees": {"kappa_bps": 2500},
            "integration": {"max_step_bps": 50},
        })
        assert cfg.fees.kappa_bps == 2500
        assert cfg.fees.rebate_participation_bps == 10000
        assert cfg.integration.max_step_bps == 50

    def test_round_trip(self):
        cfg = EngineConfig.from_dict({"oracle": {"twap_window": 600, "max_twap_age": 3600}})
        assert EngineConfig.from_dict(cfg.to_dict()) == cfg

    def test_frozen(self):
        cfg = EngineConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            cfg.fees = FeeConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            cfg.fees.kappa_bps = 1


class TestValidation:
    @pytest.mark.parametrize("section, values, message", [
        ("integration", {"max_step_bps": 0}, "max_step_bps"),
        ("integration", {"max_substeps": 0}, "max_substeps"),
        ("conservation", {"epsilon": -1}, "epsilon"),
        ("fees", {"kappa_bps": 10001}, "kappa_bps"),
        ("fees", {"min_fee_bps": 30, "max_fee_bps": 20}, "fee bounds"),
        ("fees", {"max_fee_bps": 300}, "fee bounds"),
        ("commitment", {"default_max_staleness": 0}, "default_max_staleness"),
        ("commitment", {"max_optimality_gap_bps": 500}, "max_optimality_gap_bps"),
        ("oracle", {"twap_window": 600, "max_twap_age": 300}, "max_twap_age"),
    ])
    def test_invalid_section(self, section, values, message):
        with pytest.raises(ValueError, match=message):
            EngineConfig.from_dict({section: values})

    @pytest.mark.parametrize("build, message", [
        (lambda: FeeConfig(min_fee_bps=0), "fee bounds"),
        (lambda: FeeConfig(max_fee_bps=MAX_FEE_BPS + 1), "fee bounds"),
        (lambda: IntegrationConfig(max_step_bps=0), "max_step_bps"),
        (lambda: ConservationConfig(epsilon=-1), "epsilon"),
        (lambda: CommitmentConfig(potential_tolerance=-1), "potential_tolerance"),
        (lambda: OracleConfig(twap_window=0), "twap_window"),
    ])
    def test_direct_construction_validates(self, build, message):
        with pytest.raises(ValueError, match=message):
            build()

    def test_engine_rejects_invalid_section(self):
        with pytest.raises(ValueError, match="fee bounds"):
            MarketEngine(EngineConfig(fees=FeeConfig(min_fee_bps=0)))

    def test_section_classes_validate(self):
        IntegrationConfig().validate()
        ConservationConfig().validate()
        CommitmentConfig().validate()
        OracleConfig().validate()


# ============================================================================
#  FILE / ENVIRONMENT
# ============================================================================

class TestLoading:
    def test_from_file(self, tmp_path):
        path = tmp_path / "tricurve.toml"
        path.write_text(
            "[fees]\n"
            "kappa_bps = 4000\n"
            "\n"
            "[commitment]\n"
            "min_update_interval = 120\n"
        )
        cfg = EngineConfig.from_file(str(path))
        assert cfg.fees.kappa_bps == 4000
        assert cfg.commitment.min_update_interval == 120

    def test_missing_file_uses_defaults(self, tmp_path):
        assert EngineConfig.from_file(str(tmp_path / "absent.toml")) == EngineConfig()

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "tricurve.toml"
        path.write_text("[fees]\nkappa_bps = 4000\n")
        monkeypatch.setenv("TRICURVE_FEES_KAPPA_BPS", "3000")
        assert EngineConfig.from_file(str(path)).fees.kappa_bps == 3000

    def test_env_accepts_hex(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TRICURVE_ORACLE_TWAP_WINDOW", "0x258")
        cfg = EngineConfig.from_file(str(tmp_path / "absent.toml"))
        assert cfg.oracle.twap_window == 600

    def test_env_ignored_by_plain_from_dict(self, monkeypatch):
        monkeypatch.setenv("TRICURVE_FEES_KAPPA_BPS", "3000")
        assert EngineConfig.from_dict({}).fees.kappa_bps == 5000

    def test_invalid_env_value_rejected(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TRICURVE_FEES_KAPPA_BPS", "20000")
        with pytest.raises(ValueError, match="kappa_bps"):
            EngineConfig.from_file(str(tmp_path / "absent.toml"))

    def test_load_config_from_env_path(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.toml"
        path.write_text("[integration]\nmax_step_bps = 25\n")
        monkeypatch.setenv("TRICURVE_CONFIG", str(path))
        assert load_config().integration.max_step_bps == 25

    def test_explicit_path_wins(self, tmp_path, monkeypatch):
        env_path = tmp_path / "env.toml"
        env_path.write_text("[integration]\nmax_step_bps = 25\n")
        explicit = tmp_path / "explicit.toml"
        explicit.write_text("[integration]\nmax_step_bps = 75\n")
        monkeypatch.setenv("TRICURVE_CONFIG", str(env_path))
        assert load_config(str(explicit)).integration.max_step_bps == 75
