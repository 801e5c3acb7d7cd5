from __future__ import annotations

from typing import Optional, Set

from .licence import Licence

DEFAULT_FEATURES_ATTRIBUTE = "Features"


class PolicyError(RuntimeError):
    """Exception raised when a licence policy requirement is not met."""

    pass


def licence_features(licence: Licence, attribute: str = DEFAULT_FEATURES_ATTRIBUTE) -> Set[str]:
    """
    Extract enabled features from a comma-separated licence attribute.

    Args:
        licence: Licence to inspect.
        attribute: Name of the attribute holding the feature list.

    Returns:
        Set of trimmed, non-empty feature names (empty if the attribute is absent).
    """
    raw = licence.attributes.get(attribute, "")
    return {part.strip() for part in raw.split(",") if part.strip()}


def has_feature(
    licence: Licence, feature: str, attribute: str = DEFAULT_FEATURES_ATTRIBUTE
) -> bool:
    feature = (feature or "").strip()
    if not feature:
        return False
    return feature in licence_features(licence, attribute)


def require_feature(
    licence: Licence, feature: str, attribute: str = DEFAULT_FEATURES_ATTRIBUTE
) -> None:
    """
    Enforce that a feature is enabled by the licence.

    Raises:
        PolicyError: If the feature is not enabled.
    """
    if not has_feature(licence, feature, attribute):
        raise PolicyError(f"Feature '{feature}' not enabled by licence.")


def has_attribute(licence: Licence, key: str, value: Optional[str] = None) -> bool:
    """
    Check that an attribute is present and, if ``value`` is given, equal to it.
    """
    if key not in licence.attributes:
        return False
    return value is None or licence.attributes[key] == value


def require_attribute(licence: Licence, key: str, value: Optional[str] = None) -> str:
    """
    Enforce that an attribute is present, optionally with a given value.

    Returns:
        The attribute value.

    Raises:
        PolicyError: If the attribute is missing or has a different value.
    """
    if key not in licence.attributes:
        raise PolicyError(f"Licence missing attribute '{key}'")
    actual = licence.attributes[key]
    if value is not None and actual != value:
        raise PolicyError(f"Licence attribute '{key}' is '{actual}', expected '{value}'")
    return actual
