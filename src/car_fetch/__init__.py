"""Acquire remotely-built CAR bundles and unpack them safely."""

from car_fetch.__version__ import __version__
from car_fetch.config import FetchConfig
from car_fetch.exceptions import CarFetchError

__all__ = [
    "__version__",
    "CarFetchError",
    "FetchConfig",
]
