from __future__ import annotations
import json
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from edi_services.config.logging_config import get_logger
from edi_services.errors import InvalidProfile, ProfileNotFound
from edi_services.mapper.rules import MappingProfile, profile_key

logger = get_logger("mapper.registry")


class ProfileRegistry:
    """Read-only (retailer, transaction set) -> MappingProfile table.

    Built once at process start; a changed profile needs a restart.
    """

    def __init__(self, profiles: Iterable[MappingProfile] = ()):
        table: Dict[Tuple[str, str], MappingProfile] = {}
        for p in profiles:
            p.validate()
            if p.key in table:
                raise InvalidProfile(f"{p.retailer_id}:{p.transaction_set_code}", "duplicate profile key")
            table[p.key] = p
        self._profiles: Mapping[Tuple[str, str], MappingProfile] = MappingProxyType(table)

    @staticmethod
    def load(directory: str | Path) -> "ProfileRegistry":
        """Load every ``*.json`` profile in ``directory``.

        Unreadable or invalid files are logged and skipped. When two files
        declare the same key the first one in filename order wins.
        """
        root = Path(directory)
        if not root.exists():
            logger.warning("Mappings directory '%s' not found. No profiles loaded.", root)
            return ProfileRegistry()

        loaded: Dict[Tuple[str, str], MappingProfile] = {}
        for path in sorted(root.glob("*.json")):
            try:
                profile = MappingProfile.from_dict(json.loads(path.read_text(encoding="utf-8")))
                profile.validate(source=path.name)
            except (OSError, ValueError, TypeError, InvalidProfile) as e:
                logger.error("Failed to load mapping profile from '%s': %s", path.name, e)
                continue
            if profile.key in loaded:
                logger.error("Duplicate mapping profile %s:%s in '%s' ignored",
                             profile.retailer_id, profile.transaction_set_code, path.name)
                continue
            loaded[profile.key] = profile
            logger.info("Loaded mapping profile %s:%s v%s from file '%s'",
                        profile.retailer_id, profile.transaction_set_code, profile.version, path.name)

        registry = ProfileRegistry(loaded.values())
        logger.info("ProfileRegistry initialized with %d profile(s): %s",
                    len(registry), [f"{r}:{t}" for r, t in registry.keys()])
        return registry

    def find(self, retailer_id: str, transaction_set_code: str) -> Optional[MappingProfile]:
        return self._profiles.get(profile_key(retailer_id, transaction_set_code))

    def get(self, retailer_id: str, transaction_set_code: str) -> MappingProfile:
        profile = self.find(retailer_id, transaction_set_code)
        if profile is None:
            raise ProfileNotFound(retailer_id.strip().upper(), transaction_set_code.strip())
        return profile

    def all(self) -> List[MappingProfile]:
        return [self._profiles[k] for k in sorted(self._profiles)]

    def keys(self) -> List[Tuple[str, str]]:
        return sorted(self._profiles)

    def __len__(self) -> int:
        return len(self._profiles)

    def __contains__(self, key: object) -> bool:
        return key in self._profiles
