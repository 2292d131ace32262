"""End-to-end tests for the client/server round trip."""

import logging
import warnings

import pytest
import torch

from mocks.mock_backend import MockProvider

from cryptgmm import (
    ConfigurationError,
    CorrectnessWarning,
    Matrix,
    Phase,
    PhaseTimings,
    ProtocolConfig,
    ProtocolOrchestrator,
    SchemeParams,
    SimulatedProvider,
)


def small_config(params, **kwargs):
    kwargs.setdefault("rows", 4)
    kwargs.setdefault("inner", 4)
    kwargs.setdefault("cols", 4)
    kwargs.setdefault("trials", 1)
    return ProtocolConfig(params=params, **kwargs)


class TestConcreteScenario:

    def test_identity_recovers_a(self, small_params, concrete_a):
        orchestrator = ProtocolOrchestrator(small_config(small_params))

        trial = orchestrator.run_trial(0, a=concrete_a, b=Matrix.identity(4, modulus=7))

        assert trial.result == concrete_a
        assert trial.ciphertexts_sent == 2
        assert trial.ciphertexts_received == 4
        assert trial.verified is True
        assert trial.faults == []
        assert not trial.invalid.any()
        assert trial.ok

    def test_identity_with_mock_provider(self, small_params, mock_provider, concrete_a):
        orchestrator = ProtocolOrchestrator(small_config(small_params), provider=mock_provider)

        trial = orchestrator.run_trial(0, a=concrete_a, b=Matrix.identity(4, modulus=7))

        assert trial.result == concrete_a
        assert mock_provider.calls["encrypt"] == 2
        assert mock_provider.calls["decrypt"] == 4


class TestEndToEnd:

    @pytest.mark.parametrize(
        "rows,inner,cols",
        [(4, 4, 4), (5, 3, 6), (8, 8, 8), (1, 7, 2), (9, 4, 1), (3, 1, 3)],
    )
    def test_product_matches_reference(self, rows, inner, cols):
        params = SchemeParams.for_dimensions(inner, slots=4, degree=2, modulus=7)
        config = ProtocolConfig(rows=rows, inner=inner, cols=cols, trials=1, params=params)

        with warnings.catch_warnings():
            warnings.simplefilter("error", CorrectnessWarning)
            trial = ProtocolOrchestrator(config).run_trial(0)

        assert trial.verified
        assert trial.result == trial.a @ trial.b
        assert trial.ciphertexts_sent == config.ciphertexts_sent
        assert trial.ciphertexts_received == config.ciphertexts_received

    def test_random_moduli_and_full_range_entries(self, random_moduli_params):
        config = ProtocolConfig(
            rows=6, inner=9, cols=5, trials=1, value_bound=70913,
            params=SchemeParams.for_dimensions(
                9,
                slots=4,
                degree=4,
                modulus=70913,
                slot_moduli=random_moduli_params.slot_moduli,
            ),
        )

        trial = ProtocolOrchestrator(config).run_trial(0)

        assert trial.verified
        assert trial.result == trial.a @ trial.b

    def test_thread_pool(self):
        params = SchemeParams.for_dimensions(6, slots=4, degree=2, modulus=7)
        config = ProtocolConfig(rows=9, inner=6, cols=5, trials=1, workers=3, params=params)

        trial = ProtocolOrchestrator(config).run_trial(0)

        assert trial.verified

    def test_default_parameters(self):
        config = ProtocolConfig(rows=130, inner=40, cols=3, trials=1)

        trial = ProtocolOrchestrator(config).run_trial(0)

        assert trial.verified
        assert trial.ciphertexts_sent == 2 * 2
        assert trial.ciphertexts_received == 2 * 3


class TestDeterminism:

    def test_same_seed_same_trial(self, small_params):
        config = small_config(small_params, seed=42)

        first = ProtocolOrchestrator(config).run_trial(3)
        second = ProtocolOrchestrator(config).run_trial(3)

        assert first.seed == second.seed == 45
        assert first.a == second.a
        assert first.b == second.b
        assert first.result == second.result

    def test_trials_draw_fresh_operands(self, small_params):
        orchestrator = ProtocolOrchestrator(small_config(small_params))

        first = orchestrator.run_trial(0)
        second = orchestrator.run_trial(1)

        assert first.a != second.a


class TestFaults:

    def test_malformed_ciphertext_is_reported(self, small_params, concrete_a, caplog):
        provider = MockProvider(small_params, poison={1})
        orchestrator = ProtocolOrchestrator(small_config(small_params), provider=provider)

        with caplog.at_level(logging.WARNING, logger="cryptgmm.protocol"):
            with pytest.warns(CorrectnessWarning):
                trial = orchestrator.run_trial(0, a=concrete_a, b=Matrix.identity(4, modulus=7))

        assert len(trial.faults) == 1
        fault = trial.faults[0]
        assert (fault.index, fault.row_tile, fault.column) == (1, 0, 1)
        assert trial.invalid[:, 1].all()
        assert int(trial.invalid.sum()) == 4
        assert trial.verified is False
        assert trial.mismatches == 4
        assert not trial.ok
        # The other columns are still correct.
        assert torch.equal(trial.result.data[:, [0, 2, 3]], concrete_a.data[:, [0, 2, 3]])
        assert "well-formedness" in caplog.text

    def test_exhausted_budget_without_verification(self, concrete_a):
        short = SchemeParams(slots=4, degree=2, modulus=7, level_budget=2)
        enough = SchemeParams(slots=4, degree=2, modulus=7, level_budget=3)
        orchestrator = ProtocolOrchestrator(small_config(enough, verify=False))
        # Swap in a provider that cannot carry the chain.
        orchestrator.provider = SimulatedProvider(short)
        orchestrator.encoder.provider = orchestrator.provider

        trial = orchestrator.run_trial(0, a=concrete_a, b=Matrix.identity(4, modulus=7))

        assert len(trial.faults) == 4
        assert trial.invalid.all()
        assert trial.verified is None


class TestConfigurationErrors:

    def test_budget_rejected_before_encryption(self):
        short = SchemeParams(slots=4, degree=2, modulus=7, level_budget=2)
        provider = MockProvider(short)

        with pytest.raises(ConfigurationError):
            ProtocolOrchestrator(small_config(short), provider=provider)
        assert provider.calls["encrypt"] == 0

    def test_operand_modulus_rejected(self, small_params, mock_provider):
        orchestrator = ProtocolOrchestrator(small_config(small_params), provider=mock_provider)

        with pytest.raises(ConfigurationError):
            orchestrator.run_trial(0, a=Matrix.zeros(4, 4, modulus=11), b=Matrix.zeros(4, 4, modulus=11))
        assert mock_provider.calls["encrypt"] == 0

    def test_operand_shape_rejected(self, small_params, mock_provider):
        orchestrator = ProtocolOrchestrator(small_config(small_params), provider=mock_provider)

        with pytest.raises(ConfigurationError):
            orchestrator.run_trial(0, a=Matrix.zeros(4, 4, modulus=7), b=Matrix.zeros(3, 4, modulus=7))
        assert mock_provider.calls["encrypt"] == 0

    def test_provider_params_must_match(self, small_params):
        other = SchemeParams(slots=4, degree=2, modulus=11, level_budget=3)

        with pytest.raises(ConfigurationError):
            ProtocolOrchestrator(small_config(small_params), provider=SimulatedProvider(other))

    def test_operands_come_in_pairs(self, small_params, concrete_a):
        orchestrator = ProtocolOrchestrator(small_config(small_params))

        with pytest.raises(ValueError):
            orchestrator.run_trial(0, a=concrete_a)


class TestTimingsAndReport:

    def test_phases_only_move_forward(self):
        timings = PhaseTimings()
        with timings.phase(Phase.CLIENT_ENCRYPT):
            pass

        with pytest.raises(RuntimeError):
            with timings.phase(Phase.CLIENT_ENCODE):
                pass
        with pytest.raises(RuntimeError):
            with timings.phase(Phase.CLIENT_ENCRYPT):
                pass

    def test_trial_timings(self, small_params):
        trial = ProtocolOrchestrator(small_config(small_params)).run_trial(0)

        assert trial.timings.current is Phase.DONE
        assert trial.timings.total >= trial.timings[Phase.SERVER_EVALUATE] >= 0.0
        assert "server_evaluate" in trial.timings.as_dict()

    def test_verify_skipped(self, small_params):
        trial = ProtocolOrchestrator(small_config(small_params, verify=False)).run_trial(0)

        assert trial.verified is None
        assert trial.timings[Phase.VERIFY] == 0.0
        assert "verify" not in trial.timings.as_dict()

    def test_report_line(self, small_params):
        report = ProtocolOrchestrator(small_config(small_params, trials=3)).run()

        assert len(report.trials) == 3
        assert report.failed_trials == []
        assert list(report.summary()) == ["pack", "encrypt", "decrypt", "unpack", "total", "evaluate"]
        tokens = report.format_line().split()
        assert len(tokens) == 6 * 2 + 2
        assert tokens[-2:] == ["2", "4"]
        assert all(float(t) >= 0.0 for t in tokens[:-2])
        assert len(report.samples("evaluate")) == 3
