"""
Presentation helpers that turn casualty results into the dict rendered by the UI.
"""

from blastcasualties.translation_utils import get_translation

MEDICAL_BURDEN_LABELS = {
    "severe_trauma": ("medicalBurden.severeTrauma", "Severe trauma cases"),
    "burns": ("medicalBurden.burns", "Burn victims"),
    "radiation_sickness": ("medicalBurden.radiationSickness", "Radiation sickness"),
    "combined_injuries": ("medicalBurden.combinedInjuries", "Combined injuries"),
}

HEURISTIC_SOURCE = "heuristic"


def format_count(n):
    """
    Format a people count for display.

    >>> format_count(1500000)
    '1.5M'
    >>> format_count(2500)
    '2.5K'
    >>> format_count(42)
    '42'
    """
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 1_000:
        return f"{n / 1_000:.1f}K"
    return f"{int(n):,}"


def _with_formatted(values):
    result = dict(values)
    result["formatted"] = {key: format_count(value) for key, value in values.items()}
    return result


def data_source_label(data, language=None):
    key = data.data_source if data.using_real_data and data.data_source else HEURISTIC_SOURCE
    return key, get_translation(f"dataSources.{key}", key, language)


def casualty_data_to_display(data, language=None):
    """
    Build the display payload for a casualty result.

    Only zones with fatalities or severe injuries are listed, innermost
    first. Totals and the medical burden are given both as raw numbers and
    as formatted strings.

    Args:
        data (CasualtyData): Estimator output.
        language (str, optional): Language for labels and descriptions.

    Returns:
        dict: JSON-serializable display data.
    """
    estimates = []
    for estimate in sorted(data.estimates, key=lambda e: e.radius):
        if estimate.fatalities <= 0 and estimate.injuries.severe <= 0:
            continue
        entry = estimate.to_dict()
        entry["formatted"] = {
            "population_affected": format_count(estimate.population_affected),
            "fatalities": format_count(estimate.fatalities),
            "injuries": format_count(estimate.injuries.total),
        }
        estimates.append(entry)

    medical_burden = _with_formatted(data.medical_burden.to_dict())
    medical_burden["labels"] = {
        key: get_translation(path, fallback, language)
        for key, (path, fallback) in MEDICAL_BURDEN_LABELS.items()
    }

    source_key, source_label = data_source_label(data, language)

    return {
        "totals": _with_formatted(data.totals.to_dict()),
        "medical_burden": medical_burden,
        "estimates": estimates,
        "using_real_data": data.using_real_data,
        "data_source": source_key,
        "data_source_label": source_label,
        "disclaimer": get_translation("disclaimer", "", language),
    }
