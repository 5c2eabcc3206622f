"""Interfaces to the profile store and the notification delivery service."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from scheme_engine.domain.models import Profile
from scheme_engine.logging import get_logger

from .models import DeliveryResult, NotificationError, NotificationRequest

logger = get_logger(__name__, component="notification")


class ProfileSource(ABC):
    """Read access to user profiles."""

    @abstractmethod
    def get_profile(self, user_id: str) -> Optional[Profile]:
        pass

    @abstractmethod
    def stream_profiles(self) -> Iterator[Profile]:
        """Yield every profile once. Each call starts a fresh pass."""
        pass


class StaticProfileSource(ProfileSource):
    """Profiles held in memory."""

    def __init__(self, profiles: Iterable[Profile] = ()):
        self._profiles: Dict[str, Profile] = {}
        self._anonymous: List[Profile] = []
        for profile in profiles:
            self.add(profile)

    def add(self, profile: Profile) -> None:
        if profile.user_id:
            self._profiles[profile.user_id] = profile
        else:
            self._anonymous.append(profile)

    def get_profile(self, user_id: str) -> Optional[Profile]:
        return self._profiles.get(user_id)

    def stream_profiles(self) -> Iterator[Profile]:
        yield from list(self._profiles.values())
        yield from list(self._anonymous)


class YamlProfileSource(ProfileSource):
    """Profiles read from a YAML file with a top-level ``profiles`` list.

    The file is re-read on every pass so edits are picked up without restart.

    Example file:
        profiles:
          - userId: user-1
            age: 65
            incomeLevel: BPL
            state: Odisha
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def get_profile(self, user_id: str) -> Optional[Profile]:
        for profile in self.stream_profiles():
            if profile.user_id == user_id:
                return profile
        return None

    def stream_profiles(self) -> Iterator[Profile]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise NotificationError(f"Failed to read profiles from {self.path}: {e}") from e

        entries = data.get("profiles", []) if isinstance(data, dict) else []
        for position, entry in enumerate(entries):
            try:
                yield Profile.model_validate(entry)
            except PydanticValidationError as e:
                logger.warning(
                    f"Skipping invalid profile #{position} in {self.path}: {e}",
                    extra={"event": "profiles.invalid", "position": position},
                )


class NotificationSink(ABC):
    """Delivery collaborator. Channel selection and transport live behind it."""

    @abstractmethod
    def send(self, request: NotificationRequest) -> DeliveryResult:
        pass


class LoggingNotificationSink(NotificationSink):
    """Sink that only logs requests (default when no delivery service is wired)."""

    def send(self, request: NotificationRequest) -> DeliveryResult:
        logger.info(
            f"Notification for {request.user_id}: {request.reason.value} ({request.scheme_id})",
            extra={
                "event": "notification.requested",
                "user_id": request.user_id,
                "scheme_id": request.scheme_id,
                "reason": request.reason.value,
                "corpus_version": request.corpus_version,
            },
        )
        return DeliveryResult(request=request, status="sent")
