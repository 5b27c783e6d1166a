from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# BIGINT en Postgres, INTEGER en SQLite (sinon pas d'autoincrement sur la PK)
BigIntId = BigInteger().with_variant(Integer(), "sqlite")
