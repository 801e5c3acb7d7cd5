from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional, Sequence, Set, Union

from .crypto import KeyCapability
from .io import PublicKeyLoadError, find_file_candidates, load_public_key_file
from .licence import Licence
from .ntp import network_time
from .policy import (
    DEFAULT_FEATURES_ATTRIBUTE,
    PolicyError,
    has_feature as _has_feature,
    licence_features,
    require_attribute as _require_attribute,
    require_feature as _require_feature,
)
from .runtime import require_valid_licence
from .validation import TimeSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LicenceContext:
    """
    Immutable convenience wrapper around a licence that validated as VALID.

    **Properties:**
      - serial, not_before, not_after, attributes
      - features: Set of enabled feature names (comma-separated attribute)

    **Checks:**
      - attribute(key, default): Read an attribute
      - require_attribute(key, value): Enforce an attribute (and value)
      - feature(name) / require_feature(name)
      - require_any_feature(*names) / require_all_features(*names)

    **Construction:**
      - from_licence(licence): Wrap an already validated licence
      - from_data(data, public_key): Decode and validate an encoded licence
      - from_key_file(data, pubkey_path=...): Load the public key from disk first

    Attributes:
        licence: The validated licence.
        features_attribute: Attribute holding the comma-separated feature list.
    """

    licence: Licence
    features_attribute: str = DEFAULT_FEATURES_ATTRIBUTE

    @property
    def serial(self) -> uuid.UUID:
        return self.licence.serial

    @property
    def not_before(self) -> Optional[datetime]:
        return self.licence.not_before

    @property
    def not_after(self) -> Optional[datetime]:
        return self.licence.not_after

    @property
    def attributes(self) -> Mapping[str, str]:
        return self.licence.attributes

    @property
    def features(self) -> Set[str]:
        return licence_features(self.licence, self.features_attribute)

    def attribute(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.licence.attributes.get(key, default)

    def require_attribute(self, key: str, value: Optional[str] = None) -> str:
        """
        Enforce that an attribute is present, optionally with a given value.

        Raises:
            PolicyError: If the attribute is missing or differs.
        """
        return _require_attribute(self.licence, key, value)

    def feature(self, name: str) -> bool:
        return _has_feature(self.licence, name, self.features_attribute)

    def require_feature(self, name: str) -> None:
        _require_feature(self.licence, name, self.features_attribute)

    def require_any_feature(self, *names: str) -> None:
        """
        Enforce that at least one of the features is enabled.

        Raises:
            PolicyError: If none of the features are enabled.
        """
        if any(self.feature(n) for n in names):
            return
        raise PolicyError(
            f"None of the required features are enabled: {', '.join(names)}"
        )

    def require_all_features(self, *names: str) -> None:
        for n in names:
            self.require_feature(n)

    @classmethod
    def from_licence(
        cls, licence: Licence, features_attribute: str = DEFAULT_FEATURES_ATTRIBUTE
    ) -> "LicenceContext":
        return cls(licence=licence, features_attribute=features_attribute)

    @classmethod
    def from_data(
        cls,
        data: Union[bytes, str],
        public_key: KeyCapability,
        *,
        use_network_time: bool = True,
        now: Optional[datetime] = None,
        time_source: TimeSource = network_time,
        features_attribute: str = DEFAULT_FEATURES_ATTRIBUTE,
    ) -> "LicenceContext":
        """
        Decode and validate an encoded licence, then wrap it.

        Raises:
            LicenceValidationError: If the licence cannot be decoded or is not VALID.
        """
        licence = require_valid_licence(
            data,
            public_key,
            use_network_time=use_network_time,
            now=now,
            time_source=time_source,
        )
        return cls.from_licence(licence, features_attribute)

    @classmethod
    def from_key_file(
        cls,
        data: Union[bytes, str],
        *,
        pubkey_path: Union[str, os.PathLike],
        pinned_fingerprints_sha256: Optional[Sequence[str]] = None,
        search: bool = False,
        extra_dirs: Optional[Sequence[Union[str, os.PathLike]]] = None,
        base_file: Optional[Union[str, os.PathLike]] = None,
        use_network_time: bool = True,
        now: Optional[datetime] = None,
        time_source: TimeSource = network_time,
        features_attribute: str = DEFAULT_FEATURES_ATTRIBUTE,
    ) -> "LicenceContext":
        """
        Load the public key from a file, then decode and validate the licence.

        With ``search=True`` the key file name is looked up next to
        ``base_file``, in the working directory and in ``extra_dirs``; the next
        candidate is only tried when a key fails to load. Once a key loads,
        licence validation errors are raised as they are.

        Raises:
            PublicKeyLoadError: If no candidate key file could be loaded.
            LicenceValidationError: If the licence is not VALID.
        """
        if search:
            candidates = find_file_candidates(
                str(pubkey_path), extra_dirs=extra_dirs, base_file=base_file
            )
        else:
            candidates = [pubkey_path]

        public_key: Optional[KeyCapability] = None
        last_err: Optional[Exception] = None
        for p in candidates:
            try:
                public_key = load_public_key_file(
                    p, pinned_fingerprints_sha256=pinned_fingerprints_sha256
                )
                break
            except PublicKeyLoadError as e:
                logger.debug("Public key candidate rejected: %s", e)
                last_err = e

        if public_key is None:
            if not search and last_err is not None:
                raise last_err
            raise PublicKeyLoadError(
                "Failed to load public key from any candidate path. "
                f"Tried: {[str(c) for c in candidates]}"
            ) from last_err

        return cls.from_data(
            data,
            public_key,
            use_network_time=use_network_time,
            now=now,
            time_source=time_source,
            features_attribute=features_attribute,
        )
