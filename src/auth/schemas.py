from typing import Union

from pydantic import BaseModel


class Principal(BaseModel):
    id: str
    display_name: str


class LocalPassword(BaseModel):
    username: str
    password: str


class OAuthProfile(BaseModel):
    provider: str
    account_id: str
    login: str


AuthMethod = Union[LocalPassword, OAuthProfile]
