"""Bayesian A/B analysis with Beta posteriors."""

import math

import numpy as np
from scipy import stats

DEFAULT_SAMPLES = 10000
SIGNIFICANCE_HIGH = 0.95
SIGNIFICANCE_LOW = 0.05
Z_ALPHA = 1.96
Z_BETA = 1.64


def _posterior(conversions, visitors):
    return 1 + conversions, 1 + max(visitors - conversions, 0)


def credible_interval(conversions, visitors, level=0.95):
    a, b = _posterior(conversions, visitors)
    tail = (1 - level) / 2
    return float(stats.beta.ppf(tail, a, b)), float(stats.beta.ppf(1 - tail, a, b))


def analyze_variants(variants, samples=DEFAULT_SAMPLES, seed=None):
    """Compare each variant against the control.

    ``variants`` is a list of dicts with ``id``, ``visitors``, ``conversions`` and
    ``is_control``. Returns per-variant stats plus the winner and significance.
    """
    rng = np.random.default_rng(seed)
    control = next((v for v in variants if v.get('is_control')), None)

    results = []
    for variant in variants:
        visitors = variant['visitors']
        conversions = variant['conversions']
        low, high = credible_interval(conversions, visitors)
        results.append({
            'variant_id': variant['id'],
            'visitors': visitors,
            'conversions': conversions,
            'conversion_rate': conversions / visitors if visitors else 0.0,
            'probability_to_beat_control': 0.0,
            'expected_loss': 0.0,
            'credible_interval': [round(low, 4), round(high, 4)],
            'is_control': bool(variant.get('is_control')),
        })

    # every arm needs traffic before any of them can be called a winner
    if control is None or any(v['visitors'] <= 0 for v in variants):
        for result in results:
            if result['is_control']:
                result['probability_to_beat_control'] = 0.5
        return {'variants': results, 'winner_variant_id': None, 'is_significant': False}

    control_samples = rng.beta(*_posterior(control['conversions'], control['visitors']), size=samples)

    winner_id = control['id']
    best_probability = 0.0
    for variant, result in zip(variants, results):
        if variant is control:
            result['probability_to_beat_control'] = 0.5
            continue
        treatment = rng.beta(*_posterior(variant['conversions'], variant['visitors']), size=samples)
        probability = float(np.mean(treatment > control_samples))
        loss = float(np.mean(np.maximum(0.0, control_samples - treatment)))
        result['probability_to_beat_control'] = round(probability, 4)
        result['expected_loss'] = round(loss, 6)
        if probability > best_probability:
            best_probability = probability
            winner_id = variant['id']

    challengers = [r for r in results if not r['is_control']]
    significant = any(
        r['probability_to_beat_control'] >= SIGNIFICANCE_HIGH or r['probability_to_beat_control'] <= SIGNIFICANCE_LOW
        for r in challengers
    )
    if best_probability <= 0.5:
        winner_id = control['id']
    return {'variants': results, 'winner_variant_id': winner_id, 'is_significant': significant}


def required_sample_size(baseline_rate, target_rate):
    """Visitors per variant for 95% confidence and 95% power."""
    if baseline_rate == target_rate:
        return None
    pooled = (baseline_rate + target_rate) / 2
    if pooled <= 0 or pooled >= 1:
        return None
    effect = abs(target_rate - baseline_rate) / math.sqrt(pooled * (1 - pooled))
    return math.ceil(2 * ((Z_ALPHA + Z_BETA) / effect) ** 2)
