from sqlalchemy import Column, Integer, String

from app.db.base import Base


class Colour(Base):
    __tablename__ = "hps_colour"

    colour_id = Column(Integer, primary_key=True, autoincrement=True)
    colour_name = Column(String(100), nullable=False)
