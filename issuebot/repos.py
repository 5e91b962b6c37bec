import json
import os
from typing import Dict, List, Optional

from pydantic import ValidationError

from issuebot.logger import get_logger
from issuebot.models import RepoConfig


logger = get_logger("issuebot.repos")


class RepoRegistry:
    """
    Registered repositories and their policy, persisted as a flat JSON list.
    """

    def __init__(self, repos: Optional[List[RepoConfig]] = None, path: Optional[str] = None):
        self.path = path
        self._repos: Dict[str, RepoConfig] = {r.full_name: r for r in repos or []}

    @classmethod
    def load(cls, path: str) -> "RepoRegistry":
        """
        Read the registry file. A missing or unreadable file yields an
        empty registry bound to the same path.
        """
        if not os.path.exists(path):
            logger.info("No repo registry at %s, starting empty", path)
            return cls(path=path)

        try:
            with open(path, "r") as f:
                raw = json.load(f)
        except (OSError, ValueError):
            logger.exception("Failed to read repo registry: %s", path)
            return cls(path=path)

        repos: List[RepoConfig] = []
        for entry in raw if isinstance(raw, list) else []:
            try:
                repos.append(RepoConfig.model_validate(entry))
            except ValidationError:
                logger.warning("Skipping invalid repo entry: %s", entry)

        logger.info("Loaded %d repos from %s", len(repos), path)
        return cls(repos, path=path)

    def get(self, full_name: str) -> Optional[RepoConfig]:
        return self._repos.get(full_name)

    def list(self) -> List[RepoConfig]:
        return list(self._repos.values())

    def enabled(self) -> List[RepoConfig]:
        return [r for r in self._repos.values() if r.enabled]

    def add(self, config: RepoConfig) -> None:
        """
        Add or replace the entry for config.owner/config.name.
        """
        self._repos[config.full_name] = config
        self.save()

    def remove(self, owner: str, name: str) -> bool:
        removed = self._repos.pop(f"{owner}/{name}", None) is not None
        if removed:
            self.save()
        return removed

    def save(self) -> None:
        if not self.path:
            return

        data = [
            r.model_dump(by_alias=True, exclude_none=True)
            for r in self._repos.values()
        ]
        try:
            with open(self.path, "w") as f:
                json.dump(data, f, indent=2)
        except OSError:
            logger.exception("Failed to write repo registry: %s", self.path)
