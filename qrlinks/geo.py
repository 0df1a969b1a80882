"""IP geolocation backed by a MaxMind GeoIP2/GeoLite2 City database.

The database file is optional. Without it, and for private or loopback
addresses, ``lookup`` returns an empty ``GeoPoint``. Lookup errors are logged
and also yield an empty point, so a broken database never affects redirects.
"""

import ipaddress
import logging
from dataclasses import dataclass

import geoip2.database
import geoip2.errors

__all__ = ["GeoPoint", "GeoLookup"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeoPoint:
    country: str | None = None
    region: str | None = None
    city: str | None = None
    lat: float | None = None
    lon: float | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None


class GeoLookup:
    def __init__(self, database_path: str | None = None) -> None:
        self._reader: geoip2.database.Reader | None = None
        if database_path:
            try:
                self._reader = geoip2.database.Reader(database_path)
            except Exception as exc:
                # Inform the logs, but don't bring down the app
                logger.error(f"Could not open GeoIP database {database_path}: {exc}")

    def lookup(self, ip: str | None) -> GeoPoint:
        if not ip or self._reader is None or not _is_public(ip):
            return GeoPoint()

        try:
            response = self._reader.city(ip)
        except geoip2.errors.AddressNotFoundError:
            return GeoPoint()
        except Exception as exc:
            logger.exception(f"geoIP computation error: {exc}")
            return GeoPoint()

        subdivision = response.subdivisions.most_specific
        return GeoPoint(
            country=response.country.iso_code,
            region=subdivision.name if subdivision else None,
            city=response.city.name,
            lat=response.location.latitude,
            lon=response.location.longitude,
        )

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None


def _is_public(ip: str) -> bool:
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return address.is_global
