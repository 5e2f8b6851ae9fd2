"""Tariff parameters and the registry that keeps exactly one of them active."""

import logging
import threading
from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict, Field

from taximeter.core.exceptions import NoActiveTariffError, UnknownTariffError

logger = logging.getLogger(__name__)


class TariffConfig(BaseModel):
    """Immutable fare-parameter bundle.

    Charges are integer currency units. One unit charge is added for every
    ``unit_distance_m`` travelled and for every ``unit_wait_ms`` spent below
    ``min_moving_speed_kmh``.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    flag_drop: int = Field(ge=0)
    unit_charge: int = Field(ge=0)
    unit_distance_m: float = Field(gt=0)
    unit_wait_ms: int = Field(gt=0)
    min_moving_speed_kmh: float = Field(default=3.0, ge=0)
    max_speed_kmh: float | None = Field(default=120.0, gt=0)


DEFAULT_TARIFFS: tuple[TariffConfig, ...] = (
    TariffConfig(
        name="Diurna", flag_drop=450, unit_charge=190, unit_distance_m=200.0, unit_wait_ms=60_000
    ),
    TariffConfig(
        name="Nocturna", flag_drop=550, unit_charge=230, unit_distance_m=200.0, unit_wait_ms=60_000
    ),
    TariffConfig(
        name="Festivos", flag_drop=600, unit_charge=250, unit_distance_m=200.0, unit_wait_ms=60_000
    ),
    TariffConfig(
        name="Suburbana", flag_drop=500, unit_charge=210, unit_distance_m=250.0, unit_wait_ms=60_000
    ),
    TariffConfig(
        name="Urbana", flag_drop=450, unit_charge=190, unit_distance_m=180.0, unit_wait_ms=60_000
    ),
)

DEFAULT_ACTIVE_TARIFF = "Diurna"


class TariffRegistry:
    """Named tariffs with exclusive activation.

    The registry stores a single active name, so activating one tariff
    deactivates every other one in the same step.
    """

    def __init__(self, tariffs: Iterable[TariffConfig] = (), active: str | None = None) -> None:
        self._lock = threading.Lock()
        self._tariffs: dict[str, TariffConfig] = {t.name: t for t in tariffs}
        self._active_name: str | None = None

        if active is not None:
            self.activate(active)
        elif self._tariffs:
            self._active_name = next(iter(self._tariffs))

    @classmethod
    def with_defaults(cls, active: str = DEFAULT_ACTIVE_TARIFF) -> "TariffRegistry":
        """Registry seeded with the stock day/night/holiday/suburban/urban tariffs."""
        return cls(DEFAULT_TARIFFS, active=active)

    def activate(self, name: str) -> TariffConfig:
        with self._lock:
            tariff = self._tariffs.get(name)
            if tariff is None:
                raise UnknownTariffError(
                    f"Unknown tariff: {name}", details={"available": list(self._tariffs)}
                )
            previous = self._active_name
            self._active_name = name

        if previous != name:
            logger.info(f"Tariff activated: {name} (was {previous})")
        return tariff

    def active(self) -> TariffConfig:
        with self._lock:
            if not self._tariffs or self._active_name is None:
                raise NoActiveTariffError("Tariff registry is empty")
            return self._tariffs[self._active_name]

    def get(self, name: str) -> TariffConfig:
        with self._lock:
            tariff = self._tariffs.get(name)
        if tariff is None:
            raise UnknownTariffError(f"Unknown tariff: {name}")
        return tariff

    def save(self, tariff: TariffConfig) -> None:
        """Insert or replace a tariff by name.

        Replacing the active tariff keeps it active. Trips already running
        hold their own snapshot and are not affected.
        """
        with self._lock:
            replaced = tariff.name in self._tariffs
            self._tariffs[tariff.name] = tariff
            if self._active_name is None:
                self._active_name = tariff.name
        logger.info(f"Tariff {'updated' if replaced else 'added'}: {tariff.name}")

    def is_active(self, name: str) -> bool:
        with self._lock:
            return self._active_name == name

    def names(self) -> list[str]:
        with self._lock:
            return list(self._tariffs)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._tariffs

    def __len__(self) -> int:
        with self._lock:
            return len(self._tariffs)
