"""Number formatting shared by prompts, documents and emails."""


def format_currency(value: float | None) -> str:
    if value is None:
        return "[Not Available]"
    if abs(value) >= 1_000_000:
        return f"${value / 1_000_000:.1f} million"
    if abs(value) >= 1_000:
        return f"${value / 1_000:.0f} thousand"
    return f"${value:,.0f}"


def format_percent(value: float | None) -> str:
    """Format a ratio (0.25) or an already-scaled percentage (25) as "25.0%"."""
    if value is None:
        return "[N/A]"
    if value > 1:
        return f"{value:.1f}%"
    return f"{value * 100:.1f}%"
