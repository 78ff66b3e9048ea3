"""Country lookup keys.

The kind of a lookup is inferred from the shape of the key:

    "DE"       2 characters, all uppercase  -> geo id      (countries.geo_id)
    "DEU"      3 characters, all uppercase  -> country code (countries.code)
    "Germany"  anything else                -> display name, case-insensitive

So "de", "Deu" and "germany" are all name lookups.
"""

import enum
from dataclasses import dataclass


class LookupKind(enum.Enum):
    GEO_ID = "geo_id"
    CODE = "code"
    NAME = "name"


@dataclass(frozen=True)
class CountryLookup:
    kind: LookupKind
    value: str

    @classmethod
    def parse(cls, key: str) -> "CountryLookup":
        if len(key) == 2 and key.upper() == key:
            return cls(LookupKind.GEO_ID, key)
        if len(key) == 3 and key.upper() == key:
            return cls(LookupKind.CODE, key)
        return cls(LookupKind.NAME, key)
