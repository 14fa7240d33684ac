import logging

import numpy as np
import pytest

from colourreproduction.config import MatchingSettings
from colourreproduction.controller.iteration import IterationController
from colourreproduction.errors import DegenerateSimplexError, MeasurementError, SamplePoolError
from colourreproduction.model.samples import SamplePool
from colourreproduction.model.target import Phase, StopReason, TargetStatus


def quadratic(inputs):
    return 10.0 * np.asarray(inputs, dtype=np.float64) ** 2


def test_affine_target_is_found_in_one_measurement(affine_grid_pool, affine_device):
    controller = IterationController(affine_grid_pool, affine_device)

    result = controller.run([[2.0, 3.0, 1.0]])
    target = result.targets[0]

    assert target.status == TargetStatus.FOUND
    assert result.found == [0]
    assert affine_device.calls == 1
    assert result.measured_samples == 1
    assert len(affine_grid_pool) == 28
    np.testing.assert_allclose(target.best_input_estimate, [0.2, 0.3, 0.1], atol=1e-12)
    assert [entry.phase for entry in target.history] == [Phase.LOCATE, Phase.ESTIMATE]


def test_nonlinear_device_converges(quadratic_grid_pool, quadratic_device):
    settings = MatchingSettings(threshold=0.05, max_iterations=8)
    aim = quadratic(np.array([0.3, 0.6, 0.45]))
    controller = IterationController(quadratic_grid_pool, quadratic_device, settings=settings)

    result = controller.run([aim])
    target = result.targets[0]

    assert target.status == TargetStatus.FOUND
    assert target.best_error <= 0.05
    np.testing.assert_allclose(quadratic(target.best_input_estimate), target.best_image_achieved)

    history = target.error_history
    assert all(later <= earlier for earlier, later in zip(history, history[1:]))
    estimates = [entry.error for entry in target.history if entry.phase == Phase.ESTIMATE]
    assert estimates[0] > 0.05
    assert min(estimates) <= estimates[0]


def test_measure_is_called_at_most_twice_per_round(quadratic_grid_pool, quadratic_device):
    rng = np.random.default_rng(5)
    aims = quadratic(rng.uniform(0.1, 0.9, size=(6, 3)))
    controller = IterationController(
        quadratic_grid_pool, quadratic_device, settings=MatchingSettings(threshold=0.05)
    )

    result = controller.run(aims)

    assert quadratic_device.calls <= 2 * result.rounds
    assert result.measured_samples == quadratic_device.measured
    assert len(quadratic_grid_pool) == 27 + quadratic_device.measured
    assert sorted(result.found + result.out_of_gamut + result.not_found) == list(range(6))


def test_found_targets_are_not_measured_again(affine_grid_pool, affine_device):
    controller = IterationController(affine_grid_pool, affine_device)
    first = controller.run([[2.0, 3.0, 1.0], [7.0, 1.0, 4.0]])
    calls = affine_device.calls

    second = controller.run(first.targets)

    assert affine_device.calls == calls
    assert second.measured_samples == 0
    assert all(t.status == TargetStatus.FOUND for t in second.targets)


def test_out_of_gamut_target(affine_grid_pool, affine_device):
    controller = IterationController(affine_grid_pool, affine_device)

    result = controller.run([[100.0, 100.0, 100.0]])
    target = result.targets[0]

    assert target.status == TargetStatus.OUT_OF_GAMUT
    assert result.out_of_gamut == [0]
    assert affine_device.calls == 0
    # The closing scan still reports the nearest sample
    np.testing.assert_allclose(target.best_input_estimate, [1.0, 1.0, 1.0])
    assert target.history[-1].phase == Phase.CLOSING


def test_closing_scan_promotes_boundary_colour(affine_grid_pool, affine_device):
    controller = IterationController(affine_grid_pool, affine_device)

    result = controller.run([[10.3, 10.0, 10.0]])
    target = result.targets[0]

    assert target.status == TargetStatus.FOUND
    assert affine_device.calls == 0
    assert target.best_error == pytest.approx(0.3)
    np.testing.assert_allclose(target.best_input_estimate, [1.0, 1.0, 1.0])


def test_coinciding_sample_needs_no_measurement(affine_grid_pool, affine_device):
    settings = MatchingSettings(use_tessellation=False)
    controller = IterationController(affine_grid_pool, affine_device, settings=settings)

    result = controller.run([[5.0, 0.0, 10.0]])
    target = result.targets[0]

    assert target.status == TargetStatus.FOUND
    assert affine_device.calls == 0
    np.testing.assert_allclose(target.best_input_estimate, [0.5, 0.0, 1.0])
    assert target.history[0].phase == Phase.LOCATE


def test_search_without_tessellation(affine_grid_pool, affine_device):
    settings = MatchingSettings(use_tessellation=False)
    controller = IterationController(affine_grid_pool, affine_device, settings=settings)

    result = controller.run([[2.0, 3.0, 1.0]])

    assert result.found == [0]
    assert controller.tessellations.builds == 0


def test_max_iterations_leaves_target_unresolved(quadratic_grid_pool, quadratic_device):
    settings = MatchingSettings(threshold=0.05, max_iterations=0)
    controller = IterationController(quadratic_grid_pool, quadratic_device, settings=settings)

    result = controller.run([quadratic(np.array([0.3, 0.6, 0.45]))])
    target = result.targets[0]

    assert target.status == TargetStatus.NOT_FOUND_YET
    assert target.stop_reason == StopReason.MAX_ITERATIONS
    assert result.not_found == [0]
    assert result.rounds == 0
    assert quadratic_device.calls == 0
    assert target.best_input_estimate is not None


def test_cancelled_target_is_skipped(affine_grid_pool, affine_device):
    controller = IterationController(affine_grid_pool, affine_device)
    targets = controller.make_targets([[2.0, 3.0, 1.0], [7.0, 1.0, 4.0]])

    controller.cancel(targets[1])
    result = controller.run(targets)

    assert targets[1].stop_reason == StopReason.CANCELLED
    assert targets[1].status == TargetStatus.NOT_FOUND_YET
    assert targets[1].history == []
    assert result.found == [0]
    assert result.not_found == [1]
    assert affine_device.measured == 1


def test_degenerate_simplices_skip_the_round(quadratic_grid_pool, quadratic_device, monkeypatch, caplog):
    settings = MatchingSettings(threshold=0.05, max_iterations=2)
    controller = IterationController(quadratic_grid_pool, quadratic_device, settings=settings)

    def always_degenerate(*args, **kwargs):
        raise DegenerateSimplexError("flat")

    monkeypatch.setattr(controller.refiner, "refine", always_degenerate)

    with caplog.at_level(logging.WARNING):
        result = controller.run([quadratic(np.array([0.3, 0.6, 0.45]))])

    # Only the estimates are measured, the refinement never produces candidates
    assert quadratic_device.calls == 2
    assert result.rounds == 2
    assert "skipping this round" in caplog.text
    assert result.targets[0].status in (TargetStatus.NOT_FOUND_YET, TargetStatus.FOUND)
    assert result.out_of_gamut == []


def test_failed_reacquisition_keeps_target_in_play(unit_pool, quadratic_device, monkeypatch, caplog):
    settings = MatchingSettings(threshold=0.05, max_iterations=3, use_tessellation=False, max_neighbors=4)
    controller = IterationController(unit_pool, quadratic_device, settings=settings)

    def always_degenerate(*args, **kwargs):
        raise DegenerateSimplexError("flat")

    monkeypatch.setattr(controller.refiner, "refine", always_degenerate)

    with caplog.at_level(logging.WARNING):
        result = controller.run([quadratic(np.array([0.3, 0.6, 0.45]))])
    target = result.targets[0]

    # The first estimate crowds the x-axis corner out of the neighbourhood
    assert "retrying next round" in caplog.text
    assert quadratic_device.calls == 1
    assert result.rounds == 3
    assert target.status == TargetStatus.NOT_FOUND_YET
    assert target.stop_reason == StopReason.MAX_ITERATIONS
    assert result.out_of_gamut == []
    assert result.not_found == [0]


@pytest.mark.parametrize("aims", [[], np.empty((0, 3))])
def test_no_targets_gives_empty_result(affine_grid_pool, affine_device, aims):
    controller = IterationController(affine_grid_pool, affine_device)

    result = controller.run(aims)

    assert result.targets == []
    assert result.found == [] and result.out_of_gamut == [] and result.not_found == []
    assert result.rounds == 0
    assert affine_device.calls == 0
    assert result.best_inputs.shape == (0, 0)


def test_wrong_measurement_shape_raises(affine_grid_pool):
    controller = IterationController(affine_grid_pool, lambda batch: batch[:, :2])

    with pytest.raises(MeasurementError):
        controller.run([[2.0, 3.0, 1.0]])


def test_empty_pool_raises(affine_device):
    with pytest.raises(SamplePoolError):
        IterationController(SamplePool(), affine_device).run([[2.0, 3.0, 1.0]])


def test_target_dimension_must_match_pool(affine_grid_pool, affine_device):
    with pytest.raises(SamplePoolError):
        IterationController(affine_grid_pool, affine_device).run([[2.0, 3.0]])


def test_quantised_candidates(quadratic_grid_pool, quadratic_device):
    settings = MatchingSettings(threshold=0.05, quantization_levels=255)
    controller = IterationController(quadratic_grid_pool, quadratic_device, settings=settings)

    controller.run([quadratic(np.array([0.3, 0.6, 0.45]))])

    measured = np.vstack(quadratic_device.batches)
    np.testing.assert_allclose(measured * 255, np.round(measured * 255), atol=1e-9)
    assert np.all((measured >= 0.0) & (measured <= 1.0))
