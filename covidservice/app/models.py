from sqlalchemy import (
    Column, String, Integer, BigInteger, Float, Text,
    ForeignKey, CheckConstraint, Index,
)

from covidservice.app.database import Base


class Country(Base):
    """One version of a country's descriptive data.

    Rows are append-only: a change in any attribute produces a new row with
    the same code and a greater id. The highest id per code is current.
    """
    __tablename__ = "countries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(3), nullable=False)
    geo_id = Column(String(16))
    name = Column(Text)
    population = Column(BigInteger)
    continent = Column(String(32))

    __table_args__ = (
        Index("idx_countries_code", "code", "id"),
        Index("idx_countries_geo_id", "geo_id"),
    )


class CaseFact(Base):
    __tablename__ = "cases"

    date = Column(BigInteger, primary_key=True)  # seconds since epoch, local midnight
    country_id = Column(Integer, ForeignKey("countries.id"), primary_key=True)
    cases = Column(Integer, nullable=False)
    deaths = Column(Integer, nullable=False)
    cumulative = Column(Float, nullable=False, default=0.0)

    __table_args__ = (
        CheckConstraint("cumulative >= 0", name="ck_cases_cumulative_non_negative"),
        Index("idx_cases_country_date", "country_id", "date"),
    )
