"""Bookable studios."""

from pydantic import BaseModel


class Studio(BaseModel):
    id: str
    name: str


DEFAULT_STUDIOS: list[Studio] = [
    Studio(id="studio-1", name="Studio 1"),
    Studio(id="studio-2", name="Studio 2"),
    Studio(id="studio-3", name="Studio 3"),
    Studio(id="studio-4", name="Studio 4"),
    Studio(id="golden-studio", name="312 Golden Studio"),
    Studio(id="sargasan-studio-1", name="Sargasan Studio 1"),
    Studio(id="sargasan-studio-2", name="Sargasan Studio 2"),
]
