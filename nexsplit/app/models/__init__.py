import enum


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'EQUALLY'), not member names."""
    return [member.value for member in enum_cls]


# Relationships refer to each other by name; every model must be registered
# before the mappers are configured.
from nexsplit.app.models import debt, expense, nex, split, user  # noqa: E402,F401
