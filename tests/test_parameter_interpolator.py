import unittest

from energy_bands import EnergyBands
from errors import ConfigurationError
from parameter_interpolator import (
    DEFAULT_PARAMETERS,
    MIN_SPEED,
    FrequencyMapping,
    ParameterInterpolator,
    ParameterVector,
    PatternKind,
    StateVisualConfig,
    apply_frequency_mappings,
    default_transition_table,
    interpolate,
    normalize_params,
)
from semantic_state import SemanticState, StateTransition, TransitionTrigger


def _transition(to_state, timestamp, duration_ms, from_state=None):
    return StateTransition(
        from_state=from_state,
        to_state=to_state,
        timestamp=float(timestamp),
        duration_ms=float(duration_ms),
        trigger=TransitionTrigger.THRESHOLD_EXCEEDED,
    )


class TestInterpolate(unittest.TestCase):
    def setUp(self):
        self.start = ParameterVector(intensity=0.2, speed=1.0, primary_color=(0.0, 0.0, 0.0))
        self.params = normalize_params({"intensity": 0.8, "primary_color": (1.0, 0.5, 0.0),
                                        "pattern_kind": "noise"})

    def test_endpoints_are_exact(self):
        self.assertEqual(interpolate(self.start, self.params, 0.0, 1000.0), self.start)

        end = interpolate(self.start, self.params, 1000.0, 1000.0)
        self.assertEqual(end.intensity, 0.8)
        self.assertEqual(end.primary_color, (1.0, 0.5, 0.0))
        self.assertEqual(end.pattern_kind, PatternKind.NOISE)

    def test_midpoint_is_linear(self):
        mid = interpolate(self.start, self.params, 500.0, 1000.0)
        self.assertAlmostEqual(mid.intensity, 0.5)
        self.assertAlmostEqual(mid.primary_color[1], 0.25)

    def test_intermediate_values_stay_between_endpoints(self):
        for elapsed in range(0, 1001, 50):
            v = interpolate(self.start, self.params, float(elapsed), 1000.0)
            self.assertGreaterEqual(v.intensity, 0.2 - 1e-12)
            self.assertLessEqual(v.intensity, 0.8 + 1e-12)
            for channel in v.primary_color:
                self.assertGreaterEqual(channel, 0.0)
                self.assertLessEqual(channel, 1.0)

    def test_pattern_switches_only_when_window_completes(self):
        self.assertEqual(interpolate(self.start, self.params, 999.0, 1000.0).pattern_kind,
                         PatternKind.GEOMETRIC)
        self.assertEqual(interpolate(self.start, self.params, 1500.0, 1000.0).pattern_kind,
                         PatternKind.NOISE)

    def test_omitted_fields_are_held(self):
        v = interpolate(self.start, self.params, 300.0, 1000.0)
        self.assertEqual(v.speed, self.start.speed)
        self.assertEqual(v.accent_color, self.start.accent_color)

    def test_zero_duration_jumps_to_target(self):
        self.assertEqual(interpolate(self.start, self.params, 0.0, 0.0).intensity, 0.8)


class TestFrequencyMappings(unittest.TestCase):
    def test_mapping_applied_and_clamped(self):
        energy = EnergyBands(low=0.9, mid=0.5, high=0.2, total=0.6)
        mappings = [
            FrequencyMapping(band="low", target="intensity", scale=1.0),
            FrequencyMapping(band="mid", target="complexity", scale=0.2, offset=0.1),
            FrequencyMapping(band="total", target="accentColor", scale=-2.0),
        ]
        v = apply_frequency_mappings(DEFAULT_PARAMETERS, energy, mappings)

        self.assertEqual(v.intensity, 1.0)
        self.assertAlmostEqual(v.complexity, 0.7)
        self.assertEqual(v.accent_color, (0.0, 0.0, 0.0))

    def test_speed_keeps_positive_floor(self):
        energy = EnergyBands(low=1.0, mid=1.0, high=1.0, total=1.0)
        v = apply_frequency_mappings(
            DEFAULT_PARAMETERS, energy, [FrequencyMapping(band="high", target="speed", scale=-5.0)]
        )
        self.assertEqual(v.speed, MIN_SPEED)

    def test_mappings_stack_on_same_field(self):
        energy = EnergyBands(low=0.1, mid=0.1, high=0.1, total=0.1)
        mappings = [FrequencyMapping(band="low", target="intensity", scale=1.0)] * 2
        v = apply_frequency_mappings(ParameterVector(intensity=0.5), energy, mappings)
        self.assertAlmostEqual(v.intensity, 0.7)

    def test_invalid_mapping_rejected(self):
        with self.assertRaises(ConfigurationError):
            FrequencyMapping(band="sub", target="intensity")
        with self.assertRaises(ConfigurationError):
            FrequencyMapping(band="low", target="pattern_kind")


class TestStateVisualConfig(unittest.TestCase):
    def test_params_are_normalized(self):
        entry = StateVisualConfig(500.0, {"patternType": "organic", "intensity": 1.7,
                                          "secondaryColor": [2.0, -1.0, 0.5]})
        self.assertEqual(entry.params["pattern_kind"], PatternKind.ORGANIC)
        self.assertEqual(entry.params["intensity"], 1.0)
        self.assertEqual(entry.params["secondary_color"], (1.0, 0.0, 0.5))

    def test_invalid_entries_rejected(self):
        with self.assertRaises(ConfigurationError):
            StateVisualConfig(-1.0, {})
        with self.assertRaises(ConfigurationError):
            StateVisualConfig(100.0, {"brightness": 0.5})
        with self.assertRaises(ConfigurationError):
            StateVisualConfig(100.0, {"pattern_kind": "spiral"})
        with self.assertRaises(ConfigurationError):
            StateVisualConfig(100.0, {"primary_color": (1.0, 0.0)})

    def test_default_table_covers_every_state(self):
        table = default_transition_table()
        for state in SemanticState:
            self.assertIn(state, table)


class TestParameterInterpolator(unittest.TestCase):
    def setUp(self):
        self.table = {
            SemanticState.PEAK: StateVisualConfig(300.0, {"intensity": 1.0, "speed": 2.0}),
            SemanticState.COLLAPSE: StateVisualConfig(800.0, {"intensity": 0.0,
                                                              "pattern_kind": "noise"}),
            "loop": {"duration_ms": 0.0, "params": {"complexity": 0.1}},
        }
        self.interp = ParameterInterpolator(self.table)

    def test_begin_returns_target_and_blends(self):
        target = self.interp.begin(_transition(SemanticState.PEAK, 1000.0, 300.0))
        self.assertEqual(target.intensity, 1.0)
        self.assertEqual(target.speed, 2.0)

        self.assertEqual(self.interp.value_at(1000.0), DEFAULT_PARAMETERS)
        self.assertAlmostEqual(self.interp.value_at(1150.0).intensity, 0.75)
        self.assertEqual(self.interp.value_at(1300.0), target)
        self.assertEqual(self.interp.value_at(5000.0), target)
        self.assertEqual(self.interp.progress(1150.0), 0.5)

    def test_interrupted_blend_starts_from_current_value(self):
        self.interp.begin(_transition(SemanticState.PEAK, 0.0, 300.0))
        self.interp.begin(_transition(SemanticState.COLLAPSE, 150.0, 800.0, SemanticState.PEAK))

        # Intensity was 0.75 halfway into the peak blend
        self.assertAlmostEqual(self.interp.value_at(150.0).intensity, 0.75)
        self.assertAlmostEqual(self.interp.value_at(150.0).speed, 1.5)
        self.assertEqual(self.interp.value_at(550.0).pattern_kind, PatternKind.GEOMETRIC)
        final = self.interp.value_at(950.0)
        self.assertEqual(final.intensity, 0.0)
        self.assertAlmostEqual(final.speed, 1.5)
        self.assertEqual(final.pattern_kind, PatternKind.NOISE)

    def test_mapping_entry_with_zero_duration(self):
        self.interp.begin(_transition(SemanticState.LOOP, 10.0, 0.0))
        self.assertEqual(self.interp.value_at(10.0).complexity, 0.1)

    def test_missing_entry_keeps_current_window(self):
        self.interp.begin(_transition(SemanticState.PEAK, 0.0, 300.0))
        with self.assertRaises(ConfigurationError):
            self.interp.begin(_transition(SemanticState.TENSION, 100.0, 100.0))
        self.assertEqual(self.interp.current_transition.to_state, SemanticState.PEAK)

    def test_value_at_applies_frequency_response(self):
        self.interp.set_mappings([FrequencyMapping(band="low", target="intensity", scale=0.5)])
        energy = EnergyBands(low=0.4, mid=0.0, high=0.0, total=0.2)
        self.assertAlmostEqual(self.interp.value_at(0.0, energy).intensity, 0.7)
        self.assertEqual(self.interp.value_at(0.0).intensity, 0.5)

        with self.assertRaises(ConfigurationError):
            self.interp.set_mappings([{"band": "low", "target": "intensity"}])

    def test_validate_entry(self):
        params = ParameterInterpolator.validate_entry(
            SemanticState.PEAK, {"duration_ms": 300, "params": {"patternType": "noise"}}
        )
        self.assertEqual(params, {"pattern_kind": PatternKind.NOISE})

        with self.assertRaises(ConfigurationError) as ctx:
            ParameterInterpolator.validate_entry(
                SemanticState.PEAK, {"duration_ms": 300, "params": {"glow": 1.0}}
            )
        self.assertIn("peak", ctx.exception.message)
        self.assertIn("glow", ctx.exception.message)

        with self.assertRaises(ConfigurationError):
            ParameterInterpolator.validate_entry(
                SemanticState.LOOP, {"duration_ms": 300, "params": [("intensity", 1.0)]}
            )

    def test_reset(self):
        self.interp.begin(_transition(SemanticState.PEAK, 0.0, 300.0))
        self.interp.reset()
        self.assertEqual(self.interp.value_at(1000.0), DEFAULT_PARAMETERS)
        self.assertIsNone(self.interp.current_transition)


if __name__ == "__main__":
    unittest.main()
