from typing import Optional


def format_billing_interval(seconds: Optional[int]) -> str:
    """Человекочитаемый период списания: 'Every 5 minutes', 'Every day'"""
    if not seconds:
        return "Every period"
    if seconds < 60:
        return f"Every {seconds} seconds"
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds % size == 0:
            count = seconds // size
            return f"Every {unit}" if count == 1 else f"Every {count} {unit}s"
    return f"Every {seconds} seconds"
